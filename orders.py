"""
Order placement.

An order is assembled from the owner's cart: prices are frozen into
``order_items`` at placement time and the cart is emptied afterwards.
Header and items are two separate writes; a failure on the second leaves
the header in place and is reported as an upstream error.
"""
import logging
import random
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from addresses import get_address
from cart import CartManager
from database import create_document, find_by_id, parse_object_id, to_str_id
from errors import EmptyCart, InvalidPaymentMethod, OrderNotFound, UpstreamError
from pricing import quote
from schemas import CustomerTier, Order, OrderItem, PaymentMethod

log = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
ADDRESS_FIELDS = ("label", "line1", "line2", "city", "state", "postal_code")


def generate_order_number(prefix: Optional[str] = None) -> str:
    year = datetime.now(timezone.utc).year
    return f"{prefix or config.ORDER_NUMBER_PREFIX}-{year}-{random.randint(0, 9999):04d}"


def _insert_header(db: Database, order: Order) -> dict:
    """Insert the order header under a number no other order holds."""
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        if db["orders"].find_one({"order_number": order.order_number}):
            order.order_number = generate_order_number()
            continue
        try:
            return create_document(db, "orders", order)
        except DuplicateKeyError:
            order.order_number = generate_order_number()
    raise UpstreamError("Could not allocate an order number, please retry")


def place_order(db: Database, owner: str, tier: CustomerTier, address_id: str,
                payment_method: str, notes: Optional[str] = None) -> dict:
    get_address(db, owner, address_id)
    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        raise InvalidPaymentMethod()

    cart = CartManager(db, owner)
    if not cart.lines():
        raise EmptyCart()
    resolved = cart.resolved_lines()
    if not resolved:
        raise EmptyCart("Cart items have invalid product references. Please clear your cart and try again.")

    priced = quote([(product, line["quantity"]) for line, product in resolved], tier)

    header = _insert_header(db, Order(
        order_number=generate_order_number(),
        user_id=owner,
        address_id=address_id,
        subtotal=priced.subtotal,
        delivery_fee=priced.delivery_fee,
        total=priced.total,
        payment_method=method,
        notes=notes,
    ))
    order_id = str(header["_id"])

    items = [
        OrderItem(
            order_id=order_id,
            product_id=str(line.product["_id"]),
            product_name=line.product["name"],
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
        ).model_dump(mode="json")
        for line in priced.lines
    ]
    try:
        db["order_items"].insert_many([dict(item) for item in items])
    except PyMongoError as e:
        log.error("Order %s (%s) saved without items: %s", header["order_number"], order_id, e)
        raise UpstreamError(f"Order {header['order_number']} was created but its items could not be saved")

    cart.clear()
    log.info("Order %s placed by %s: total %.2f via %s", header["order_number"], owner, priced.total, method.value)

    order = to_str_id(header)
    order["items"] = items
    return order


def _attach(db: Database, order: dict) -> dict:
    data = to_str_id(order)
    address = find_by_id(db, "addresses", order.get("address_id"))
    data["address"] = {k: address.get(k) for k in ADDRESS_FIELDS} if address else None
    data["items"] = order_items(db, data["id"])
    return data


def list_orders(db: Database, owner: str) -> List[dict]:
    docs = db["orders"].find({"user_id": owner}).sort([("created_at", -1)])
    return [_attach(db, o) for o in docs]


def get_order(db: Database, owner: str, order_id: str) -> dict:
    order = find_by_id(db, "orders", order_id, user_id=owner)
    if not order:
        raise OrderNotFound()
    return _attach(db, order)


def order_items(db: Database, order_id: str) -> List[dict]:
    oid = parse_object_id(order_id)
    if oid is None:
        return []
    return [to_str_id(i) for i in db["order_items"].find({"order_id": str(oid)})]
