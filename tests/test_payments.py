import base64
import json
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from paytmchecksum import PaytmChecksum

import payments
from config import Settings
from errors import UpstreamPaymentError
from payments import (
    MockPaytmGateway,
    PaytmGateway,
    UpiPayments,
    build_paytm_gateway,
    paytm_body_string,
    verify_paytm_signature,
)
from tests.conftest import MERCHANT_KEY


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def live_settings(settings):
    return settings.model_copy(update={"paytm_env": "staging"})


# ---------- UPI ----------
def test_upi_link_fields(settings):
    link = UpiPayments(settings).build_link(629, "ORD-1", "Trizoverse Order ORD-1")
    parts = urlsplit(link)
    query = parse_qs(parts.query)

    assert link.startswith("upi://pay?")
    assert query == {
        "pa": ["trizoverse@upi"],
        "pn": ["Trizoverse"],
        "am": ["629.00"],
        "tn": ["Trizoverse Order ORD-1"],
        "cu": ["INR"],
    }


def test_upi_payload_renders_png_qr(settings):
    payload = UpiPayments(settings).payload_for({"id": "ORD-1", "total": 99.5})
    assert "am=99.50" in payload["upiLink"]
    prefix = "data:image/png;base64,"
    assert payload["qrCode"].startswith(prefix)
    assert base64.b64decode(payload["qrCode"][len(prefix):])[:8] == b"\x89PNG\r\n\x1a\n"


def test_upi_disabled_without_payee(settings):
    upi = UpiPayments(settings.model_copy(update={"upi_vpa": ""}))
    assert upi.payload_for({"id": "ORD-1", "total": 100}) == {"upiLink": "", "qrCode": ""}


# ---------- Paytm signatures ----------
def test_signature_round_trip():
    body = {"orderId": "ORD-1", "resultInfo": {"resultStatus": "TXN_SUCCESS"}}
    signature = PaytmChecksum.generateSignature(paytm_body_string(body), MERCHANT_KEY)

    assert verify_paytm_signature(body, signature, MERCHANT_KEY)
    assert not verify_paytm_signature({**body, "orderId": "ORD-2"}, signature, MERCHANT_KEY)


@pytest.mark.parametrize("signature", [None, "", "not-a-signature", "AAAA"])
def test_malformed_signatures_fail(signature):
    assert not verify_paytm_signature({"orderId": "ORD-1"}, signature, MERCHANT_KEY)


def test_signature_needs_merchant_key():
    body = {"orderId": "ORD-1"}
    signature = PaytmChecksum.generateSignature(paytm_body_string(body), MERCHANT_KEY)
    assert not verify_paytm_signature(body, signature, "")


# ---------- Paytm gateway ----------
def test_gateway_selection(settings, live_settings):
    assert isinstance(build_paytm_gateway(settings), MockPaytmGateway)
    gateway = build_paytm_gateway(live_settings)
    assert type(gateway) is PaytmGateway
    assert gateway.host == "https://securegw-stage.paytm.in"
    production = build_paytm_gateway(live_settings.model_copy(update={"paytm_env": "production"}))
    assert production.host == "https://securegw.paytm.in"


def test_mock_gateway_issues_mock_token(settings):
    payload = build_paytm_gateway(settings).initiate("ORD-9", 629, "asha@trizoverse.in")
    assert payload["mode"] == "mock"
    assert payload["txnToken"] == "mock-token-ORD-9"
    assert payload["callbackUrl"] == "http://localhost:3000/payments/paytm/webhook"


def test_live_gateway_success(live_settings, monkeypatch):
    calls = []

    def fake_post(url, params=None, data=None, headers=None, timeout=None):
        calls.append({"url": url, "params": params, "data": data, "timeout": timeout})
        return FakeResponse({"body": {"resultInfo": {"resultStatus": "S"}, "txnToken": "tok-123"}})

    monkeypatch.setattr(payments.requests, "post", fake_post)
    payload = PaytmGateway(live_settings).initiate("ORD-1", 629, "asha@trizoverse.in")

    assert payload["txnToken"] == "tok-123"
    assert payload["mode"] == "staging"
    assert calls[0]["url"] == "https://securegw-stage.paytm.in/theia/api/v1/initiateTransaction"
    assert calls[0]["params"] == {"mid": "TRIZO0000000001", "orderId": "ORD-1"}
    assert calls[0]["timeout"] == 15

    sent = json.loads(calls[0]["data"])
    assert sent["body"]["txnAmount"] == {"value": "629.00", "currency": "INR"}
    assert sent["body"]["userInfo"] == {"custId": "asha@trizoverse.in"}
    assert verify_paytm_signature(sent["body"], sent["head"]["signature"], MERCHANT_KEY)


def test_live_gateway_failure_carries_provider_message(live_settings, monkeypatch):
    monkeypatch.setattr(
        payments.requests,
        "post",
        lambda *a, **kw: FakeResponse({"body": {"resultInfo": {"resultStatus": "F", "resultMsg": "Invalid MID"}}}),
    )
    with pytest.raises(UpstreamPaymentError, match="Invalid MID"):
        PaytmGateway(live_settings).initiate("ORD-1", 629, "asha@trizoverse.in")


def test_live_gateway_transport_error(live_settings, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(payments.requests, "post", boom)
    with pytest.raises(UpstreamPaymentError, match="Unable to reach Paytm"):
        PaytmGateway(live_settings).initiate("ORD-1", 629, "asha@trizoverse.in")


def test_live_gateway_needs_credentials(live_settings):
    gateway = PaytmGateway(live_settings.model_copy(update={"paytm_merchant_key": ""}))
    with pytest.raises(UpstreamPaymentError, match="not configured"):
        gateway.initiate("ORD-1", 629, "asha@trizoverse.in")


def test_callback_url_follows_base_url():
    settings = Settings(base_url="https://shop.trizoverse.in")
    assert settings.callback_url == "https://shop.trizoverse.in/payments/paytm/webhook"
    assert Settings(paytm_callback_url="https://hooks.example/paytm").callback_url == "https://hooks.example/paytm"
