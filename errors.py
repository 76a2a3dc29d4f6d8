"""
Error taxonomy for the storefront API.

Every error carries the HTTP status it is answered with; the route layer turns
them into ``{"error": message}`` bodies.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(StoreError):
    status_code = 400


class InvalidProduct(ValidationError):
    def __init__(self, product_id: str):
        super().__init__(f"Invalid product: {product_id}")
        self.product_id = product_id


class InvalidSize(ValidationError):
    def __init__(self, product_id: str, size: str):
        super().__init__(f"Invalid size {size} for product {product_id}")
        self.product_id = product_id
        self.size = size


class Unauthorized(StoreError):
    status_code = 401


class NotFound(StoreError):
    status_code = 404


class InvalidSignature(StoreError):
    status_code = 400


class PersistenceError(StoreError):
    status_code = 500


class UpstreamPaymentError(StoreError):
    status_code = 502
