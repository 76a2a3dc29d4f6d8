import logging
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError as SchemaError

from config import Settings
from database import Repository
from errors import InvalidProduct, InvalidSize
from schemas import CartLineItem, Offer, OrderItem

logger = logging.getLogger(__name__)


class CartTotals(BaseModel):
    items: List[OrderItem]
    subtotal: float
    discount: float
    shipping: float
    total: float
    offers: List[Offer] = Field(default_factory=list, description="Offers that were applied")


def parse_offers(raw: Iterable[dict]) -> List[Offer]:
    offers = []
    for entry in raw:
        try:
            offers.append(Offer.model_validate(entry))
        except SchemaError as e:
            logger.warning("Skipping malformed offer %s: %s", entry.get("id") if isinstance(entry, dict) else entry, e)
    return offers


class PricingCalculator:
    """Prices a cart against the product catalog and the offers collection."""

    def __init__(self, products: Repository, settings: Settings):
        self.products = products
        self.shipping_fee = settings.shipping_fee
        self.free_shipping_threshold = settings.free_shipping_threshold

    def calculate(self, items: List[CartLineItem], offers: List[Offer]) -> CartTotals:
        catalog = {p.get("id"): p for p in self.products.list()}
        subtotal = 0.0
        enriched = []

        for item in items:
            product = catalog.get(item.product_id)
            if product is None:
                raise InvalidProduct(item.product_id)
            prices = product.get("price") or {}
            if item.size not in prices:
                raise InvalidSize(item.product_id, item.size)
            unit_price = float(prices[item.size])
            line_total = unit_price * item.quantity
            subtotal += line_total
            enriched.append(OrderItem(
                product_id=item.product_id,
                title=product.get("title", ""),
                size=item.size,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=line_total,
                custom_artwork=item.custom_artwork,
            ))

        discount = 0.0
        applied = []
        for offer in offers:
            if not offer.active or subtotal < offer.conditions.min_subtotal:
                continue
            if offer.type == "percentage":
                discount += subtotal * offer.value / 100
            else:
                discount += offer.value
            applied.append(offer)

        shipping = 0.0 if subtotal >= self.free_shipping_threshold else float(self.shipping_fee)
        total = max(subtotal - discount + shipping, 0.0)

        return CartTotals(
            items=enriched,
            subtotal=subtotal,
            discount=discount,
            shipping=shipping,
            total=total,
            offers=applied,
        )
