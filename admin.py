"""
Back-office operations. Callers are checked for the admin flag in main.py
before any of these run.
"""
import base64
import binascii
import logging
from collections import Counter
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import catalog
from database import create_document, find_by_id, get_documents, now, parse_object_id, to_str_id
from errors import NotFound, ProductNotFound, ValidationFailed
from orders import order_items
from schemas import Category, OrderStatus, PaymentStatus, Product
from storage import ImageStore

log = logging.getLogger(__name__)

PENDING_ORDER_STATUSES = [OrderStatus.placed.value, OrderStatus.confirmed.value, OrderStatus.processing.value]
PROFILE_SUMMARY_FIELDS = ("full_name", "phone", "customer_tier", "business_name")


# Products

def list_products(db: Database) -> List[dict]:
    return [to_str_id(p) for p in get_documents(db, "products", sort=[("created_at", -1)])]


def create_product(db: Database, data: dict) -> dict:
    product = Product(slug=catalog.slugify(data["name"]), **data)
    doc = create_document(db, "products", product)
    log.info("Product %s created", doc["slug"])
    return to_str_id(doc)


def update_product(db: Database, product_id: str, changes: dict) -> dict:
    oid = parse_object_id(product_id)
    if oid is None:
        raise ProductNotFound()
    if changes.get("name"):
        changes["slug"] = catalog.slugify(changes["name"])
    changes["updated_at"] = now()
    doc = db["products"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not doc:
        raise ProductNotFound()
    return to_str_id(doc)


def delete_product(db: Database, product_id: str) -> None:
    oid = parse_object_id(product_id)
    if oid is None or db["products"].delete_one({"_id": oid}).deleted_count == 0:
        raise ProductNotFound()


# Categories

def create_category(db: Database, name: str, description: Optional[str] = None,
                    image_url: Optional[str] = None, sort_order: int = 0) -> dict:
    category = Category(name=name, slug=catalog.slugify(name), description=description,
                        image_url=image_url, sort_order=sort_order)
    return to_str_id(create_document(db, "categories", category))


def update_category(db: Database, category_id: str, changes: dict) -> dict:
    oid = parse_object_id(category_id)
    if oid is None:
        raise NotFound("Category not found")
    if changes.get("name"):
        changes["slug"] = catalog.slugify(changes["name"])
    changes["updated_at"] = now()
    doc = db["categories"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not doc:
        raise NotFound("Category not found")
    return to_str_id(doc)


def delete_category(db: Database, category_id: str) -> None:
    category = find_by_id(db, "categories", category_id)
    if not category:
        raise NotFound("Category not found")
    # products reference a category by id or by slug
    count = db["products"].count_documents({"category": {"$in": [category_id, category["slug"]]}})
    if count > 0:
        raise ValidationFailed(f"Cannot delete category. {count} products are using it.")
    db["categories"].delete_one({"_id": category["_id"]})


# Orders

def _profile_map(db: Database, user_ids, fields=PROFILE_SUMMARY_FIELDS) -> dict:
    oids = [oid for oid in (parse_object_id(u) for u in set(user_ids)) if oid is not None]
    if not oids:
        return {}
    profiles = db["profiles"].find({"_id": {"$in": oids}})
    return {str(p["_id"]): {"id": str(p["_id"]), **{f: p.get(f) for f in fields}} for p in profiles}


def list_orders(db: Database, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> dict:
    query = {"order_status": status} if status else {}
    docs = get_documents(db, "orders", query, sort=[("created_at", -1)], skip=offset, limit=limit)
    profiles = _profile_map(db, [o.get("user_id") for o in docs])
    orders = []
    for o in docs:
        data = to_str_id(o)
        data["items"] = order_items(db, data["id"])
        data["profile"] = profiles.get(o.get("user_id"))
        orders.append(data)
    return {
        "orders": orders,
        "total": db["orders"].count_documents({}),
        "limit": limit,
        "offset": offset,
    }


def update_order_status(db: Database, order_id: str, order_status: Optional[str] = None,
                        payment_status: Optional[str] = None) -> dict:
    changes = {"updated_at": now()}
    if order_status:
        if order_status not in [s.value for s in OrderStatus]:
            raise ValidationFailed(f"Invalid order status. Must be one of: {', '.join(s.value for s in OrderStatus)}")
        changes["order_status"] = order_status
    if payment_status:
        if payment_status not in [s.value for s in PaymentStatus]:
            raise ValidationFailed(f"Invalid payment status. Must be one of: {', '.join(s.value for s in PaymentStatus)}")
        changes["payment_status"] = payment_status

    oid = parse_object_id(order_id)
    doc = db["orders"].find_one_and_update({"_id": oid}, {"$set": changes},
                                           return_document=ReturnDocument.AFTER) if oid else None
    if not doc:
        raise NotFound("Order not found")
    log.info("Order %s updated: %s", doc["order_number"], {k: v for k, v in changes.items() if k != "updated_at"})
    return to_str_id(doc)


# Customers

def _total_spent(orders: List[dict]) -> float:
    return round(sum(float(o.get("total", 0)) for o in orders if o.get("payment_status") == PaymentStatus.paid.value), 2)


def list_customers(db: Database) -> List[dict]:
    customers = []
    for profile in get_documents(db, "profiles", {"is_admin": False}, sort=[("created_at", -1)]):
        customer = to_str_id(profile)
        try:
            orders = list(db["orders"].find({"user_id": customer["id"]}, {"total": 1, "payment_status": 1}))
        except PyMongoError as e:
            log.warning("Could not load orders for customer %s: %s", customer["id"], e)
            orders = []
        customer["order_count"] = len(orders)
        customer["total_spent"] = _total_spent(orders)
        customers.append(customer)
    return customers


def get_customer(db: Database, customer_id: str) -> dict:
    profile = find_by_id(db, "profiles", customer_id)
    if not profile:
        raise NotFound("Customer not found")
    customer = to_str_id(profile)
    orders = [to_str_id(o) for o in get_documents(db, "orders", {"user_id": customer["id"]}, sort=[("created_at", -1)])]
    for order in orders:
        order["items"] = order_items(db, order["id"])
    customer["order_count"] = len(orders)
    customer["total_spent"] = _total_spent(orders)
    return {"customer": customer, "orders": orders}


# Dashboard

def stats(db: Database) -> dict:
    paid = db["orders"].find({"payment_status": PaymentStatus.paid.value}, {"total": 1})
    recent = get_documents(db, "orders", sort=[("created_at", -1)], limit=5)
    names = _profile_map(db, [o.get("user_id") for o in recent], fields=("full_name",))
    by_status = Counter(o.get("order_status") for o in db["orders"].find({}, {"order_status": 1}))
    return {
        "stats": {
            "total_orders": db["orders"].count_documents({}),
            "pending_orders": db["orders"].count_documents({"order_status": {"$in": PENDING_ORDER_STATUSES}}),
            "total_revenue": round(sum(float(o.get("total", 0)) for o in paid), 2),
            "total_customers": db["profiles"].count_documents({"is_admin": False}),
            "total_products": db["products"].count_documents({}),
        },
        "orders_by_status": dict(by_status),
        "recent_orders": [
            {
                "id": str(o["_id"]),
                "order_number": o.get("order_number"),
                "total": o.get("total"),
                "order_status": o.get("order_status"),
                "payment_status": o.get("payment_status"),
                "created_at": o.get("created_at"),
                "profile": names.get(o.get("user_id")),
            }
            for o in recent
        ],
    }


# Uploads

def upload_image(store: ImageStore, file_name: str, file_base64: str, content_type: Optional[str] = None) -> dict:
    if "," in file_base64 and file_base64.startswith("data:"):
        file_base64 = file_base64.split(",", 1)[1]
    try:
        data = base64.b64decode(file_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("file_base64 is not valid base64")
    if not data:
        raise ValidationFailed("Uploaded file is empty")
    return store.upload(file_name, data, content_type or "image/jpeg")
