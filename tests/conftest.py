import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from main import create_app
from orders import OrderService
from payments import UpiPayments, build_paytm_gateway
from pricing import PricingCalculator

ADMIN_KEY = "test-admin-key"
# 16 characters, the AES key length Paytm merchant keys use
MERCHANT_KEY = "kbzk1DSbJiV_O3p5"

PRODUCTS = [
    {
        "id": "poster-1",
        "type": "poster",
        "title": "Saturn Rising",
        "description": "Minimal planet print",
        "price": {"M": 300, "L": 500, "XL": 800},
        "stock": {"M": 10, "L": 5, "XL": 2},
        "category": "space",
        "tags": ["planets", "minimal"],
        "featured": True,
    },
    {
        "id": "poster-2",
        "type": "poster",
        "title": "Tokyo Nights",
        "description": "Neon street scene",
        "price": {"M": 450, "L": 1200},
        "stock": {"M": 3, "L": 1},
        "category": "city",
        "tags": ["neon"],
        "featured": False,
    },
    {
        "id": "polaroid-1",
        "type": "polaroid",
        "title": "Retro Pack",
        "description": "Set of ten retro polaroids",
        "price": {"S": 99},
        "stock": {"S": 40},
        "category": "retro",
        "tags": ["vintage"],
        "featured": False,
    },
]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        admin_api_key=ADMIN_KEY,
        upi_vpa="trizoverse@upi",
        upi_name="Trizoverse",
        paytm_mid="TRIZO0000000001",
        paytm_merchant_key=MERCHANT_KEY,
        paytm_env="mock",
        data_dir=tmp_path / "data",
        uploads_dir=tmp_path / "uploads",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def db(settings):
    database = Database(settings.data_dir)
    for product in PRODUCTS:
        database.products.put(dict(product))
    return database


@pytest.fixture
def pricing(db, settings):
    return PricingCalculator(db.products, settings)


@pytest.fixture
def order_service(db, pricing, settings):
    return OrderService(
        db,
        pricing,
        UpiPayments(settings),
        build_paytm_gateway(settings),
        merchant_key=settings.paytm_merchant_key,
    )


@pytest.fixture
def client(settings, db):
    return TestClient(create_app(settings))


@pytest.fixture
def admin_headers():
    return {"x-api-key": ADMIN_KEY}


@pytest.fixture
def checkout_body():
    return {
        "customer": {
            "firstName": "Asha",
            "lastName": "Rao",
            "email": "asha@trizoverse.in",
            "phone": "9876543210",
        },
        "shippingAddress": {
            "line1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
        },
        "paymentMethod": "cod",
        "items": [{"product_id": "poster-1", "size": "M", "quantity": 2}],
    }
