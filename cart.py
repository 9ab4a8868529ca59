"""
Shopping carts.

``CartStore`` holds the cart rules (product resolution, stock and MOQ
checks, pricing of the listing); subclasses only decide where lines live.
``CartManager`` keeps them in the ``cart_items`` collection for a signed-in
owner, ``GuestCart`` keeps them in the snapshot a visitor's browser stores.
Both apply the same policy: lowering a line below the product's minimum
order quantity removes the line.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import find_product, resolve_product
from database import now, parse_object_id, to_str_id
from errors import LineNotFound, ShopError
from pricing import check_line, quote
from schemas import CustomerTier

log = logging.getLogger(__name__)


class CartStore:
    def __init__(self, db: Database):
        self.db = db

    # storage, provided by subclasses

    def lines(self) -> List[dict]:
        raise NotImplementedError

    def get_line(self, line_id: str) -> Optional[dict]:
        raise NotImplementedError

    def _increment(self, product_id: str, quantity: int) -> Tuple[dict, bool]:
        raise NotImplementedError

    def _set_quantity(self, line: dict, quantity: int) -> dict:
        raise NotImplementedError

    def _delete(self, line_id: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    # rules

    def add_item(self, product_ref: str, quantity: int = 1) -> Tuple[dict, bool]:
        """Add ``quantity`` of a product; returns the resulting line and whether it is new."""
        product = resolve_product(self.db, product_ref)
        check_line(product, quantity)
        return self._increment(str(product["_id"]), quantity)

    def update_quantity(self, line_id: str, quantity: int) -> Optional[dict]:
        """Set a line's quantity. Returns None when the line was removed for falling below MOQ."""
        line = self.get_line(line_id)
        if not line:
            raise LineNotFound()
        product = find_product(self.db, line["product_id"])
        moq = int(product.get("moq") or 1) if product else 1
        if quantity < moq:
            self._delete(line_id)
            return None
        return self._set_quantity(line, quantity)

    def remove_line(self, line_id: str) -> None:
        self._delete(line_id)

    def resolved_lines(self) -> List[Tuple[dict, dict]]:
        """Pair each line with its live product, dropping lines whose product is gone."""
        resolved = []
        for line in self.lines():
            product = find_product(self.db, line["product_id"])
            if not product:
                log.warning("Cart line %s references missing product %s", line.get("id"), line["product_id"])
                continue
            resolved.append((line, product))
        return resolved

    def list_cart(self, tier: CustomerTier) -> dict:
        resolved = self.resolved_lines()
        q = quote([(to_str_id(product), line["quantity"]) for line, product in resolved], tier, strict=False)
        items = []
        for (line, _), priced in zip(resolved, q.lines):
            items.append({
                "id": line["id"],
                "quantity": priced.quantity,
                "product": {**priced.product, "display_price": priced.unit_price},
                "item_total": priced.total_price,
            })
        return {
            "items": items,
            "subtotal": q.subtotal,
            "delivery_fee": q.delivery_fee,
            "total": q.total,
            "item_count": q.item_count,
            "customer_tier": tier.value,
        }


class CartManager(CartStore):
    """Server-held cart of a signed-in customer."""

    def __init__(self, db: Database, owner: str):
        super().__init__(db)
        self.owner = owner
        self.collection = db["cart_items"]

    def lines(self) -> List[dict]:
        return [to_str_id(d) for d in self.collection.find({"user_id": self.owner}).sort([("created_at", 1)])]

    def get_line(self, line_id: str) -> Optional[dict]:
        oid = parse_object_id(line_id)
        if oid is None:
            return None
        return to_str_id(self.collection.find_one({"_id": oid, "user_id": self.owner}))

    def _increment(self, product_id: str, quantity: int) -> Tuple[dict, bool]:
        ts = now()
        doc = self.collection.find_one_and_update(
            {"user_id": self.owner, "product_id": product_id},
            {
                "$inc": {"quantity": quantity},
                "$set": {"updated_at": ts},
                "$setOnInsert": {"created_at": ts},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        # existing lines already hold at least one unit
        created = doc["quantity"] == quantity
        return to_str_id(doc), created

    def _set_quantity(self, line: dict, quantity: int) -> dict:
        doc = self.collection.find_one_and_update(
            {"_id": parse_object_id(line["id"]), "user_id": self.owner},
            {"$set": {"quantity": quantity, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise LineNotFound()
        return to_str_id(doc)

    def _delete(self, line_id: str) -> None:
        oid = parse_object_id(line_id)
        if oid is not None:
            self.collection.delete_one({"_id": oid, "user_id": self.owner})

    def clear(self) -> None:
        self.collection.delete_many({"user_id": self.owner})


class GuestCart(CartStore):
    """Cart of an anonymous visitor, backed by the snapshot kept in browser storage.

    ``snapshot`` is a list of ``{"id", "product_id", "quantity"}`` dicts;
    hand ``snapshot`` back to the client after each operation.
    """

    def __init__(self, db: Database, snapshot: Optional[List[dict]] = None):
        super().__init__(db)
        self.snapshot = [dict(item) for item in (snapshot or [])]

    def lines(self) -> List[dict]:
        return list(self.snapshot)

    def get_line(self, line_id: str) -> Optional[dict]:
        return next((item for item in self.snapshot if item["id"] == line_id), None)

    def _increment(self, product_id: str, quantity: int) -> Tuple[dict, bool]:
        for item in self.snapshot:
            if item["product_id"] == product_id:
                item["quantity"] += quantity
                return item, False
        item = {"id": f"guest_{uuid.uuid4().hex[:12]}", "product_id": product_id, "quantity": quantity}
        self.snapshot.append(item)
        return item, True

    def _set_quantity(self, line: dict, quantity: int) -> dict:
        line["quantity"] = quantity
        return line

    def _delete(self, line_id: str) -> None:
        self.snapshot = [item for item in self.snapshot if item["id"] != line_id]

    def clear(self) -> None:
        self.snapshot = []


def merge_guest_cart(cart: CartManager, guest_items: List[dict]) -> dict:
    """Move a guest snapshot into a signed-in cart; quantities add up.

    A line that can no longer be added is skipped and reported rather than
    failing the whole merge.
    """
    merged, skipped = 0, []
    for item in guest_items:
        try:
            cart.add_item(item["product_id"], item["quantity"])
            merged += 1
        except ShopError as e:
            log.warning("Skipping guest cart line %s for %s: %s", item.get("product_id"), cart.owner, e.message)
            skipped.append({"product_id": item.get("product_id"), "error": e.message})
    return {"merged": merged, "skipped": skipped}
