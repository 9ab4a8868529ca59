import os
import logging
from typing import List, Literal, Optional

from fastapi import FastAPI, Depends, Response, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import admin
import addresses
import auth
import catalog
import database
import orders
import payments
from auth import CurrentUser
from cart import CartManager, GuestCart, merge_guest_cart
from database import get_db, get_public_db
from errors import Forbidden, ShopError, Unauthorized, ValidationFailed
from schemas import CustomerTier
from storage import ImageStore

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="Storefront API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# Error envelope: every failure is {"error": message}
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})

@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    log.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


# Request models
class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# Partial updates leave omitted fields alone; an explicit null is only
# accepted where the stored document allows an empty value
def not_null(cls, value):
    if value is None:
        raise ValueError("may not be null")
    return value

class RegisterRequest(StrictModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    customer_tier: CustomerTier = CustomerTier.individual
    business_name: Optional[str] = None
    tax_id: Optional[str] = None

class LoginRequest(StrictModel):
    email: EmailStr
    password: str

class CartAdd(StrictModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)

class CartUpdate(StrictModel):
    quantity: int = Field(..., ge=0)

class GuestLine(StrictModel):
    id: str
    product_id: str
    quantity: int = Field(..., ge=1)

class GuestCartRequest(StrictModel):
    items: List[GuestLine] = []
    op: Literal["list", "add", "update", "remove"] = "list"
    product_id: Optional[str] = None
    line_id: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)

class CartMerge(StrictModel):
    items: List[GuestLine]

class AddressCreate(StrictModel):
    label: Optional[str] = None
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    is_default: bool = False

class AddressUpdate(StrictModel):
    label: Optional[str] = None
    line1: Optional[str] = Field(None, min_length=1)
    line2: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    postal_code: Optional[str] = Field(None, min_length=1)
    is_default: Optional[bool] = None

    check_required = field_validator("line1", "city", "state", "postal_code", "is_default")(not_null)

class OrderCreate(StrictModel):
    address_id: str = Field(..., min_length=1)
    payment_method: str
    notes: Optional[str] = None

class PaymentCreate(StrictModel):
    order_id: str = Field(..., min_length=1)

class PaymentVerify(StrictModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)

class IdRequest(StrictModel):
    id: str = Field(..., min_length=1)

class ProductCreate(StrictModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    b2b_price: Optional[float] = Field(None, ge=0)
    moq: int = Field(1, ge=1)
    unit: str = "kg"
    image_url: Optional[str] = None
    certifications: List[str] = []
    in_stock: bool = True
    featured: bool = False

class ProductUpdate(StrictModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0)
    b2b_price: Optional[float] = Field(None, ge=0)
    moq: Optional[int] = Field(None, ge=1)
    unit: Optional[str] = None
    image_url: Optional[str] = None
    certifications: Optional[List[str]] = None
    in_stock: Optional[bool] = None
    featured: Optional[bool] = None

    check_required = field_validator("name", "category", "price", "moq", "unit", "certifications",
                                     "in_stock", "featured")(not_null)

class CategoryCreate(StrictModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: int = 0

class CategoryUpdate(StrictModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: Optional[int] = None

    check_required = field_validator("name", "sort_order")(not_null)

class OrderStatusUpdate(StrictModel):
    id: str = Field(..., min_length=1)
    order_status: Optional[str] = None
    payment_status: Optional[str] = None

class ImageUpload(StrictModel):
    file_name: str = Field(..., min_length=1)
    file_base64: str = Field(..., min_length=1)
    content_type: Optional[str] = None


# Dependencies
def get_gateway() -> payments.RazorpayGateway:
    return payments.default_gateway()

def get_image_store(db: Database = Depends(get_db)) -> ImageStore:
    return ImageStore(db)

def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Optional[CurrentUser]:
    return auth.resolve_identity(db, token)

def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise Unauthorized()
    return user


def require_admin(user: CurrentUser):
    if not user.is_admin:
        raise Forbidden()

def tier_of(user: Optional[CurrentUser]) -> CustomerTier:
    return user.customer_tier if user else CustomerTier.individual


# Preflight: answered on every path, CORS headers come from the middleware
@app.options("/{full_path:path}")
def preflight(full_path: str):
    return Response(status_code=200)


# Auth
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    result = auth.register(db, **payload.model_dump())
    return {"message": "Registration successful", **result}

@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return {"message": "Login successful", **auth.login(db, payload.email, payload.password)}

@app.get("/api/auth/me")
def get_me(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"user": auth.me(db, current_user)}


# Catalog
@app.get("/api/products")
def list_products(category: Optional[str] = None, featured: Optional[str] = None,
                  user: Optional[CurrentUser] = Depends(get_optional_user),
                  db: Database = Depends(get_public_db)):
    tier = tier_of(user)
    products = catalog.list_products(db, tier, category=category, featured=featured == "true")
    return {"products": products, "customer_tier": tier.value}

@app.get("/api/products/{product_ref}")
def get_product(product_ref: str, user: Optional[CurrentUser] = Depends(get_optional_user),
                db: Database = Depends(get_public_db)):
    tier = tier_of(user)
    return {"product": catalog.get_product(db, product_ref, tier), "customer_tier": tier.value}

@app.get("/api/categories")
def list_categories(db: Database = Depends(get_public_db)):
    return catalog.list_categories(db)


# Cart
@app.get("/api/cart")
def get_cart(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return CartManager(db, current_user.id).list_cart(current_user.customer_tier)

@app.post("/api/cart")
def add_to_cart(payload: CartAdd, response: Response, current_user: CurrentUser = Depends(get_current_user),
                db: Database = Depends(get_db)):
    line, created = CartManager(db, current_user.id).add_item(payload.product_id, payload.quantity)
    if created:
        response.status_code = status.HTTP_201_CREATED
        return {"message": "Added to cart", "item": line}
    return {"message": "Cart updated", "item": line}

@app.post("/api/cart/guest")
def guest_cart(payload: GuestCartRequest, user: Optional[CurrentUser] = Depends(get_optional_user),
               db: Database = Depends(get_db)):
    cart = GuestCart(db, [item.model_dump() for item in payload.items])
    if payload.op == "add":
        if not payload.product_id:
            raise ValidationFailed("product_id is required")
        cart.add_item(payload.product_id, payload.quantity or 1)
    elif payload.op == "update":
        if not payload.line_id or payload.quantity is None:
            raise ValidationFailed("line_id and quantity are required")
        cart.update_quantity(payload.line_id, payload.quantity)
    elif payload.op == "remove":
        if not payload.line_id:
            raise ValidationFailed("line_id is required")
        cart.remove_line(payload.line_id)
    return {"items": cart.snapshot, "cart": cart.list_cart(tier_of(user))}

@app.post("/api/cart/merge")
def merge_cart(payload: CartMerge, current_user: CurrentUser = Depends(get_current_user),
               db: Database = Depends(get_db)):
    cart = CartManager(db, current_user.id)
    result = merge_guest_cart(cart, [item.model_dump() for item in payload.items])
    return {**result, "cart": cart.list_cart(current_user.customer_tier)}

@app.put("/api/cart/{line_id}")
def update_cart_item(line_id: str, payload: CartUpdate, current_user: CurrentUser = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    line = CartManager(db, current_user.id).update_quantity(line_id, payload.quantity)
    if line is None:
        return {"message": "Removed from cart", "item": None}
    return {"message": "Cart updated", "item": line}

@app.delete("/api/cart/{line_id}")
def remove_cart_item(line_id: str, current_user: CurrentUser = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    CartManager(db, current_user.id).remove_line(line_id)
    return {"message": "Item removed from cart"}


# Addresses
@app.get("/api/addresses")
def list_addresses(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"addresses": addresses.list_addresses(db, current_user.id)}

@app.post("/api/addresses", status_code=201)
def add_address(payload: AddressCreate, current_user: CurrentUser = Depends(get_current_user),
                db: Database = Depends(get_db)):
    address = addresses.add_address(db, current_user.id, **payload.model_dump())
    return {"message": "Address added", "address": address}

@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, current_user: CurrentUser = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    address = addresses.update_address(db, current_user.id, address_id, payload.model_dump(exclude_unset=True))
    return {"message": "Address updated", "address": address}

@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, current_user: CurrentUser = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    addresses.delete_address(db, current_user.id, address_id)
    return {"message": "Address deleted"}


# Orders
@app.get("/api/orders")
def my_orders(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"orders": orders.list_orders(db, current_user.id)}

@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, current_user: CurrentUser = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    order = orders.place_order(db, current_user.id, current_user.customer_tier,
                               payload.address_id, payload.payment_method, payload.notes)
    return {"message": "Order placed successfully", "order": order}

@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, current_user: CurrentUser = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    return {"order": orders.get_order(db, current_user.id, order_id)}


# Payments
@app.post("/api/payment/create")
def create_payment(payload: PaymentCreate, current_user: CurrentUser = Depends(get_current_user),
                   db: Database = Depends(get_db), gateway: payments.RazorpayGateway = Depends(get_gateway)):
    return payments.create_intent(db, gateway, current_user.id, payload.order_id)

@app.post("/api/payment/verify")
def verify_payment(payload: PaymentVerify, current_user: CurrentUser = Depends(get_current_user),
                   db: Database = Depends(get_db), gateway: payments.RazorpayGateway = Depends(get_gateway)):
    order = payments.verify_callback(db, gateway, current_user.id, payload.razorpay_order_id,
                                     payload.razorpay_payment_id, payload.razorpay_signature)
    return {"message": "Payment verified successfully", "order": order}


# Admin
@app.get("/api/admin/products")
def admin_products(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    require_admin(current_user)
    return {"products": admin.list_products(db)}

@app.post("/api/admin/products", status_code=201)
def admin_create_product(payload: ProductCreate, current_user: CurrentUser = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    require_admin(current_user)
    return {"message": "Product created", "product": admin.create_product(db, payload.model_dump())}

@app.put("/api/admin/products")
def admin_update_product(payload: ProductUpdate, current_user: CurrentUser = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    require_admin(current_user)
    changes = payload.model_dump(exclude_unset=True)
    product = admin.update_product(db, changes.pop("id"), changes)
    return {"message": "Product updated", "product": product}

@app.delete("/api/admin/products")
def admin_delete_product(payload: IdRequest, current_user: CurrentUser = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    require_admin(current_user)
    admin.delete_product(db, payload.id)
    return {"message": "Product deleted"}

@app.get("/api/admin/categories")
def admin_categories(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    require_admin(current_user)
    return catalog.list_categories(db)

@app.post("/api/admin/categories", status_code=201)
def admin_create_category(payload: CategoryCreate, current_user: CurrentUser = Depends(get_current_user),
                          db: Database = Depends(get_db)):
    require_admin(current_user)
    return {"message": "Category created", "category": admin.create_category(db, **payload.model_dump())}

@app.put("/api/admin/categories")
def admin_update_category(payload: CategoryUpdate, current_user: CurrentUser = Depends(get_current_user),
                          db: Database = Depends(get_db)):
    require_admin(current_user)
    changes = payload.model_dump(exclude_unset=True)
    category = admin.update_category(db, changes.pop("id"), changes)
    return {"message": "Category updated", "category": category}

@app.delete("/api/admin/categories")
def admin_delete_category(payload: IdRequest, current_user: CurrentUser = Depends(get_current_user),
                          db: Database = Depends(get_db)):
    require_admin(current_user)
    admin.delete_category(db, payload.id)
    return {"message": "Category deleted"}

@app.get("/api/admin/orders")
def admin_orders(status: Optional[str] = None, limit: int = 50, offset: int = 0,
                 current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    require_admin(current_user)
    return admin.list_orders(db, status=status, limit=max(limit, 1), offset=max(offset, 0))

@app.put("/api/admin/orders")
def admin_update_order(payload: OrderStatusUpdate, current_user: CurrentUser = Depends(get_current_user),
                       db: Database = Depends(get_db)):
    require_admin(current_user)
    order = admin.update_order_status(db, payload.id, payload.order_status, payload.payment_status)
    return {"message": "Order updated", "order": order}

@app.get("/api/admin/customers")
def admin_customers(id: Optional[str] = None, current_user: CurrentUser = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    require_admin(current_user)
    if id:
        return admin.get_customer(db, id)
    return {"customers": admin.list_customers(db)}

@app.get("/api/admin/stats")
def admin_stats(current_user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    require_admin(current_user)
    return admin.stats(db)

@app.post("/api/admin/upload", status_code=201)
def admin_upload(payload: ImageUpload, current_user: CurrentUser = Depends(get_current_user),
                 store: ImageStore = Depends(get_image_store)):
    require_admin(current_user)
    stored = admin.upload_image(store, payload.file_name, payload.file_base64, payload.content_type)
    return {"message": "Image uploaded successfully", **stored}


# Images
@app.get("/api/images/{name}")
def get_image(name: str, store: ImageStore = Depends(get_image_store)):
    data, content_type = store.open(name)
    return Response(content=data, media_type=content_type)


# Health
@app.get("/")
def root():
    return {"message": "Storefront API running"}

@app.get("/test")
def test_database():
    response = {
        "backend": "running",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "database_name": "set" if os.getenv("DATABASE_NAME") else "not set",
        "payment_gateway": "set" if config.RAZORPAY_KEY_ID and config.RAZORPAY_KEY_SECRET else "not set",
        "collections": []
    }
    try:
        if database.db is not None:
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
    except PyMongoError as e:
        response["error"] = str(e)[:120]
    return response


@app.on_event("startup")
def startup_event():
    if database.db is None:
        log.warning("DATABASE_URL/DATABASE_NAME not set; requests needing the database will fail")
        return
    database.ensure_indexes(database.db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
