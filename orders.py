import logging
import random
import string
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from database import Database
from errors import InvalidSignature, UpstreamPaymentError, ValidationError
from payments import PaytmGateway, UpiPayments, verify_paytm_signature
from pricing import PricingCalculator, parse_offers
from schemas import AppliedOffer, CheckoutRequest, Customer, Order, OrderCustomer, dump, utc_now

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits

# Paytm resultStatus -> (order status, payment status); None keeps the current value
PAYTM_STATUS_MAP = {
    "TXN_SUCCESS": ("confirmed", "paid"),
    "TXN_FAILURE": ("failed", "failed"),
    "PENDING": (None, "pending"),
}


def generate_order_id() -> str:
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


class OrderService:
    def __init__(
        self,
        db: Database,
        pricing: PricingCalculator,
        upi: UpiPayments,
        paytm: PaytmGateway,
        merchant_key: str = "",
    ):
        self.db = db
        self.pricing = pricing
        self.upi = upi
        self.paytm = paytm
        self.merchant_key = merchant_key

    # ---------- Reads ----------
    def get(self, order_id: str) -> Dict[str, Any]:
        return self.db.orders.require(order_id, "Order")

    def list(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
        orders = self.db.orders.list()
        if status:
            orders = [o for o in orders if o.get("status") == status]
        orders.sort(key=lambda o: o.get("created_at") or "", reverse=True)
        return orders[offset:offset + limit], len(orders)

    # ---------- Create ----------
    def create(self, checkout: CheckoutRequest) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Price the cart, persist the order and the customer, then start payment.

        A payment failure raises UpstreamPaymentError after the order is saved;
        that order stays pending and is not rolled back.
        """
        offers = parse_offers(self.db.offers.list())
        totals = self.pricing.calculate(checkout.items, offers)

        customer = checkout.customer
        order = Order(
            id=generate_order_id(),
            customer=OrderCustomer(name=customer.full_name, email=customer.email, phone=customer.phone),
            shipping_address=checkout.shipping_address,
            items=totals.items,
            offers_applied=[AppliedOffer(id=o.id, label=o.label, type=o.type) for o in totals.offers],
            subtotal=totals.subtotal,
            discount=totals.discount,
            shipping=totals.shipping,
            total=totals.total,
            payment_method=checkout.payment_method,
            payment_status="cod" if checkout.payment_method == "cod" else "pending",
            status="pending",
            notes=checkout.notes,
        )
        with self.db.orders.document.lock:
            while self.db.orders.get(order.id) is not None:
                order.id = generate_order_id()
            record = self.db.orders.put(dump(order))
        self._remember_customer(record["customer"])
        logger.info("New order created %s %s total=%s", record["id"], customer.email, record["total"])

        payment: Dict[str, Any] = {}
        if checkout.payment_method == "upi":
            payment["upi"] = self.upi.payload_for(record)
        elif checkout.payment_method == "paytm":
            try:
                payment["paytm"] = self.paytm.initiate(record["id"], record["total"], customer.email)
            except UpstreamPaymentError as e:
                logger.error("Paytm transaction error for %s: %s", record["id"], e)
                raise
        return record, payment

    def _remember_customer(self, customer: Dict[str, str]) -> None:
        with self.db.customers.document.lock:
            if any(c.get("email") == customer["email"] for c in self.db.customers.list()):
                return
            self.db.customers.put(dump(Customer(id=str(uuid.uuid4()), **customer)))

    # ---------- Transitions ----------
    def update(self, order_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: v for k, v in changes.items() if k != "id"}

        def merge(current):
            current.update(changes)
            current["updated_at"] = utc_now()
            return current

        return self.db.orders.update(order_id, merge, "Order")

    def confirm_upi(self, order_id: str, transaction_id: str, amount: Optional[float] = None) -> Dict[str, Any]:
        def confirm(current):
            current.update({
                "payment_status": "paid",
                "status": "confirmed",
                "upi_transaction_id": transaction_id,
                "paid_amount": amount if amount is not None else current.get("total"),
                "updated_at": utc_now(),
            })
            return current

        order = self.db.orders.update(order_id, confirm, "Order")
        logger.info("UPI payment confirmed %s txn=%s", order_id, transaction_id)
        return order

    def apply_paytm_webhook(self, payload: Dict[str, Any], header_signature: Optional[str] = None) -> Dict[str, Any]:
        head = payload.get("head") if isinstance(payload.get("head"), dict) else {}
        signature = header_signature or head.get("signature") or payload.get("signature")
        if isinstance(payload.get("body"), dict):
            body = payload["body"]
        else:
            body = {k: v for k, v in payload.items() if k not in ("signature", "head")}

        if not verify_paytm_signature(body, signature, self.merchant_key):
            logger.warning("Invalid Paytm signature for order %s", body.get("orderId"))
            raise InvalidSignature("Invalid signature")

        order_id = body.get("orderId")
        if not order_id:
            raise ValidationError("Missing orderId")

        result_info = body.get("resultInfo")
        if not isinstance(result_info, dict):
            result_info = {}
        result_status = result_info.get("resultStatus")
        status, payment_status = PAYTM_STATUS_MAP.get(result_status, (None, None))
        txn_amount = body.get("txnAmount")

        def reconcile(current):
            if status:
                current["status"] = status
            if payment_status:
                current["payment_status"] = payment_status
            current["paytm_transaction_id"] = body.get("txnId")
            if isinstance(txn_amount, dict) and txn_amount.get("value"):
                current["paid_amount"] = txn_amount["value"]
            current["paytm_response"] = body
            current["updated_at"] = utc_now()
            return current

        order = self.db.orders.update(order_id, reconcile, "Order")
        logger.info("Paytm webhook %s for %s", result_status, order_id)
        return order
