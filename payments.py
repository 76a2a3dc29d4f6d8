"""
Payment adapters

UPI needs no gateway call: the order total becomes a upi:// deep link and a QR
code the customer scans. Paytm checkout is a signed initiateTransaction call
that hands back a transaction token for the client-side checkout page; the
outcome arrives later through the webhook (see orders.OrderService).
"""
import base64
import io
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import qrcode
import requests
from paytmchecksum import PaytmChecksum

from config import Settings
from errors import UpstreamPaymentError

logger = logging.getLogger(__name__)

PAYTM_HOSTS = {
    "production": "https://securegw.paytm.in",
    "staging": "https://securegw-stage.paytm.in",
}


# ---------- UPI ----------
class UpiPayments:
    def __init__(self, settings: Settings):
        self.vpa = settings.upi_vpa
        self.name = settings.upi_name or "Trizoverse"
        self.currency = settings.currency

    def build_link(self, amount: float, order_id: str, note: Optional[str] = None) -> str:
        if not self.vpa:
            return ""
        params = {
            "pa": self.vpa,
            "pn": self.name,
            "am": f"{float(amount or 0):.2f}",
            "tn": note or f"Order {order_id}",
            "cu": self.currency,
        }
        return "upi://pay?" + urlencode(params)

    def render_qr(self, link: str) -> str:
        qr = qrcode.QRCode(box_size=10, border=2)
        qr.add_data(link)
        qr.make(fit=True)
        buffer = io.BytesIO()
        qr.make_image().save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    def payload_for(self, order: Dict[str, Any]) -> Dict[str, str]:
        link = self.build_link(order["total"], order["id"], f"Trizoverse Order {order['id']}")
        if not link:
            return {"upiLink": "", "qrCode": ""}
        try:
            qr_code = self.render_qr(link)
        except (OSError, ValueError) as e:
            logger.error("Error generating UPI QR for %s: %s", order["id"], e)
            qr_code = ""
        return {"upiLink": link, "qrCode": qr_code}


# ---------- Paytm ----------
def paytm_body_string(body: Dict[str, Any]) -> str:
    """Compact JSON of a Paytm ``body``; this exact string is what gets signed."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def verify_paytm_signature(body: Dict[str, Any], signature: Optional[str], merchant_key: str) -> bool:
    if not signature or not merchant_key:
        return False
    try:
        return bool(PaytmChecksum.verifySignature(paytm_body_string(body), merchant_key, signature))
    except (ValueError, TypeError, IndexError):
        # malformed checksum (bad base64 / block size) never verifies
        return False


class PaytmGateway:
    def __init__(self, settings: Settings):
        self.mid = settings.paytm_mid
        self.merchant_key = settings.paytm_merchant_key
        self.website = settings.paytm_website
        self.env = settings.paytm_env
        self.callback_url = settings.callback_url
        self.timeout = settings.paytm_timeout
        self.currency = settings.currency

    @property
    def host(self) -> str:
        return PAYTM_HOSTS["production" if self.env == "production" else "staging"]

    def initiate(self, order_id: str, amount: float, customer_id: str) -> Dict[str, Any]:
        if not self.mid or not self.merchant_key:
            raise UpstreamPaymentError("Paytm credentials are not configured")

        body = {
            "requestType": "Payment",
            "mid": self.mid,
            "websiteName": self.website,
            "orderId": order_id,
            "callbackUrl": self.callback_url,
            "txnAmount": {"value": f"{float(amount or 0):.2f}", "currency": self.currency},
            "userInfo": {"custId": customer_id},
        }
        body_string = paytm_body_string(body)
        try:
            signature = PaytmChecksum.generateSignature(body_string, self.merchant_key)
        except (ValueError, TypeError) as e:
            raise UpstreamPaymentError(f"Unable to sign Paytm request: {e}") from e

        url = f"{self.host}/theia/api/v1/initiateTransaction"
        data = '{"body":' + body_string + ',"head":{"signature":' + json.dumps(signature) + "}}"
        try:
            r = requests.post(
                url,
                params={"mid": self.mid, "orderId": order_id},
                data=data.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            result = r.json()
        except ValueError as e:
            raise UpstreamPaymentError("Invalid response from Paytm") from e
        except requests.RequestException as e:
            raise UpstreamPaymentError(f"Unable to reach Paytm: {e}") from e

        response_body = (result.get("body") if isinstance(result, dict) else None) or {}
        result_info = response_body.get("resultInfo") or {}
        if result_info.get("resultStatus") == "S" and response_body.get("txnToken"):
            return {
                "mode": self.env,
                "txnToken": response_body["txnToken"],
                "orderId": order_id,
                "amount": amount,
                "mid": self.mid,
                "callbackUrl": self.callback_url,
            }
        raise UpstreamPaymentError(result_info.get("resultMsg") or "Unable to create Paytm transaction")


class MockPaytmGateway(PaytmGateway):
    """Offline stand-in selected with PAYTM_ENV=mock; never reaches the network."""

    def initiate(self, order_id: str, amount: float, customer_id: str) -> Dict[str, Any]:
        logger.info("Paytm mock mode, issuing mock transaction token for %s", order_id)
        return {
            "mode": "mock",
            "txnToken": f"mock-token-{order_id}",
            "orderId": order_id,
            "amount": amount,
            "mid": self.mid or "mock_mid",
            "callbackUrl": self.callback_url,
        }


def build_paytm_gateway(settings: Settings) -> PaytmGateway:
    if settings.paytm_env == "mock":
        return MockPaytmGateway(settings)
    return PaytmGateway(settings)
