import os
import hmac
import logging
import time
import uuid
from typing import Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, configure_logging
from database import Database
from errors import NotFound, PersistenceError, StoreError, Unauthorized, ValidationError
from orders import OrderService
from payments import UpiPayments, build_paytm_gateway
from pricing import PricingCalculator
from schemas import (
    CartPayload,
    CheckoutRequest,
    OrderUpdate,
    PaytmCreateRequest,
    PosterKey,
    Product,
    ProductCreate,
    ProductUpdate,
    Subscription,
    UpiConfirmation,
    dump,
    utc_now,
)

logger = logging.getLogger(__name__)

ALLOWED_UPLOAD_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}

router = APIRouter()


# ---------- Dependencies ----------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def require_admin(request: Request, x_api_key: Optional[str] = Header(default=None)):
    admin_key = request.app.state.settings.admin_api_key
    if not x_api_key or not hmac.compare_digest(x_api_key.encode("utf-8"), admin_key.encode("utf-8")):
        client = request.client.host if request.client else None
        logger.warning("Unauthorized admin attempt ip=%s path=%s", client, request.url.path)
        raise Unauthorized("Unauthorized")
    return True


def session_id(x_session_id: Optional[str] = Header(default=None)) -> str:
    return x_session_id or "default"


def parse_number(raw):
    if raw is None:
        raise ValidationError("Missing query parameter: key")
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError("key must be a number")
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError("key must be a number")
    return int(value) if value.is_integer() else value


# ---------- Health ----------
@router.get("/")
def root():
    return {"status": "ok", "service": "trizoverse-store-api"}


@router.get("/test")
def test_storage(request: Request):
    db = get_db(request)
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Available",
        "data_dir": str(db.data_dir),
        "collections": [],
    }
    if db.data_dir.is_dir():
        response["storage"] = "✅ Available" if os.access(db.data_dir, os.W_OK) else "⚠️  Read-only"
        response["collections"] = db.collection_names()
    return response


# ---------- Posters list ----------
@router.get("/api/list")
def list_posters(db: Database = Depends(get_db)):
    posters = db.posters.load()
    return {"list": posters if isinstance(posters, list) else []}


@router.get("/api/search")
def search_poster(key: Optional[str] = None, db: Database = Depends(get_db)):
    value = parse_number(key)
    posters = db.posters.load()
    if not isinstance(posters, list):
        posters = []
    return {"index": posters.index(value) if value in posters else -1}


@router.post("/api/posters", dependencies=[Depends(require_admin)])
def add_poster(payload: PosterKey, db: Database = Depends(get_db)):
    value = parse_number(payload.key)
    with db.posters.lock:
        posters = db.posters.load()
        posters.append(value)
        db.posters.save(posters)
    return {"list": posters}


@router.delete("/api/posters", dependencies=[Depends(require_admin)])
def delete_poster(key: Optional[str] = None, db: Database = Depends(get_db)):
    value = parse_number(key)
    with db.posters.lock:
        posters = [p for p in db.posters.load() if p != value]
        db.posters.save(posters)
    return {"list": posters}


# ---------- Newsletter / Offers ----------
@router.post("/api/subscribe")
def subscribe(payload: Subscription, db: Database = Depends(get_db)):
    with db.subscribers.lock:
        existing = db.subscribers.load()
        if payload.email not in existing:
            existing.append(payload.email)
            db.subscribers.save(existing)
    logger.info("New newsletter subscriber %s", payload.email)
    return {"success": True}


@router.get("/api/offers")
def list_offers(db: Database = Depends(get_db)):
    return {"offers": [o for o in db.offers.list() if o.get("active") is not False]}


# ---------- Products ----------
def _min_price(product: dict) -> float:
    prices = product.get("price") or {}
    return min((float(v) for v in prices.values()), default=float("inf"))


@router.get("/api/products")
def list_products(
    category: Optional[str] = None,
    product_type: Optional[str] = Query(default=None, alias="type"),
    featured: Optional[bool] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    search: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=0),
    db: Database = Depends(get_db),
):
    products = db.products.list()
    if category:
        products = [p for p in products if p.get("category") == category]
    if product_type:
        products = [p for p in products if p.get("type") == product_type]
    if featured:
        products = [p for p in products if p.get("featured") is True]
    if min_price is not None:
        products = [p for p in products if _min_price(p) >= min_price]
    if max_price is not None:
        products = [p for p in products if _min_price(p) <= max_price]
    if search:
        term = search.lower()
        products = [
            p for p in products
            if term in (p.get("title") or "").lower()
            or term in (p.get("description") or "").lower()
            or any(term in str(tag).lower() for tag in p.get("tags") or [])
        ]
    limited = products[:limit] if limit is not None else products
    return {"products": limited, "total": len(products)}


@router.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"product": db.products.require(product_id, "Product")}


@router.post("/api/products", status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductCreate, db: Database = Depends(get_db)):
    data = payload.model_dump(exclude_none=True)
    data["id"] = payload.id or f"{payload.type}-{int(time.time() * 1000)}"
    product = dump(Product(**data, created_at=utc_now()))
    with db.products.document.lock:
        if db.products.get(product["id"]) is not None:
            raise ValidationError("Product with this ID already exists")
        db.products.put(product)
    logger.info("Added product %s %s", product["id"], product["title"])
    return {"product": product}


@router.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    changes = payload.changes()
    changes.pop("id", None)

    def merge(current):
        current.update(changes)
        current["updated_at"] = utc_now()
        return current

    product = db.products.update(product_id, merge, "Product")
    logger.info("Updated product %s %s", product_id, product.get("title"))
    return {"product": product}


@router.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    deleted = db.products.delete(product_id)
    if deleted is None:
        raise NotFound("Product not found")
    logger.info("Deleted product %s %s", product_id, deleted.get("title"))
    return {"message": "Product deleted successfully", "deletedProduct": deleted}


# ---------- Cart ----------
@router.get("/api/cart")
def get_cart(session: str = Depends(session_id), db: Database = Depends(get_db)):
    stored = db.carts.get(session)
    if stored is None:
        return {"cart": []}
    return {"cart": stored.get("cart", []), "updated_at": stored.get("updated_at")}


@router.post("/api/cart")
def save_cart(payload: CartPayload, session: str = Depends(session_id), db: Database = Depends(get_db)):
    db.carts.put({"id": session, "cart": [dump(i) for i in payload.cart], "updated_at": utc_now()})
    return {"success": True, "message": "Cart saved successfully"}


@router.delete("/api/cart")
def clear_cart(session: str = Depends(session_id), db: Database = Depends(get_db)):
    db.carts.delete(session)
    return {"success": True, "message": "Cart cleared successfully"}


# ---------- Uploads ----------
@router.post("/api/uploads", status_code=201)
def upload_file(request: Request, file: UploadFile = File(...)):
    settings = get_settings(request)
    if file.content_type not in ALLOWED_UPLOAD_TYPES:
        raise ValidationError("Only JPEG, PNG and WEBP formats are allowed")
    # one byte past the limit is enough to know it is too big
    content = file.file.read(settings.upload_limit_bytes + 1)
    if len(content) > settings.upload_limit_bytes:
        raise ValidationError(f"File exceeds the {settings.upload_limit_bytes} byte limit")
    if not content:
        raise ValidationError("No file uploaded")

    # the served extension follows the checked content type, never the client filename
    name = f"{int(time.time() * 1000)}-{uuid.uuid4()}{ALLOWED_UPLOAD_TYPES[file.content_type]}"
    try:
        settings.uploads_dir.mkdir(parents=True, exist_ok=True)
        (settings.uploads_dir / name).write_bytes(content)
    except OSError as e:
        logger.error("Error saving upload %s: %s", name, e)
        raise PersistenceError("Unable to save upload") from e
    return {"fileId": name, "fileUrl": f"/uploads/{name}", "mimeType": file.content_type, "size": len(content)}


# ---------- Orders ----------
@router.post("/api/orders", status_code=201)
def create_order(payload: CheckoutRequest, orders: OrderService = Depends(get_orders)):
    order, payment = orders.create(payload)
    return {"order": order, "payment": payment, "message": "Order created successfully"}


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, orders: OrderService = Depends(get_orders)):
    return {"order": orders.get(order_id)}


@router.get("/api/orders", dependencies=[Depends(require_admin)])
def list_orders(
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=0),
    offset: int = Query(default=0, ge=0),
    orders: OrderService = Depends(get_orders),
):
    page, total = orders.list(status, limit, offset)
    return {"orders": page, "total": total, "filters": {"status": status, "limit": limit, "offset": offset}}


@router.put("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
def update_order(order_id: str, payload: OrderUpdate, orders: OrderService = Depends(get_orders)):
    order = orders.update(order_id, payload.changes())
    logger.info("Order updated %s status=%s", order_id, payload.status or "unchanged")
    return {"order": order}


# ---------- Payments ----------
@router.post("/payments/upi/confirm")
def confirm_upi_payment(body: UpiConfirmation, orders: OrderService = Depends(get_orders)):
    order = orders.confirm_upi(body.order_id, body.transaction_id, body.amount)
    return {"success": True, "order": order}


@router.post("/payments/paytm/create")
def create_paytm_transaction(body: PaytmCreateRequest, orders: OrderService = Depends(get_orders)):
    return orders.paytm.initiate(body.order_id, body.amount, body.customer_id)


@router.post("/payments/paytm/webhook")
async def paytm_webhook(request: Request, orders: OrderService = Depends(get_orders)):
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be an object")
    signature = request.headers.get("x-checksum") or request.headers.get("x-paytm-signature")
    order = orders.apply_paytm_webhook(payload, signature)
    return {"success": True, "order": order}


# ---------- Error handling ----------
def _describe(errors) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "header", "path")]
    return f"{'.'.join(loc)}: {first.get('msg')}" if loc else str(first.get("msg"))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if exc.status_code != 404 else "Not found"
        return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------- App ----------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="Trizoverse Store API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    db = Database(settings.data_dir)
    pricing = PricingCalculator(db.products, settings)
    app.state.settings = settings
    app.state.db = db
    app.state.orders = OrderService(
        db,
        pricing,
        UpiPayments(settings),
        build_paytm_gateway(settings),
        merchant_key=settings.paytm_merchant_key,
    )

    @app.on_event("startup")
    def startup():
        configure_logging(settings)
        db.initialize()
        logger.info("Store API ready, data in %s", settings.data_dir)

    register_error_handlers(app)
    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=str(settings.uploads_dir), check_dir=False), name="uploads")
    return app


load_dotenv()
app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
