import logging
import re
from typing import List, Optional

from pymongo.database import Database

from database import collection_exists, find_by_id, get_documents, to_str_id
from errors import ProductNotFound
from pricing import unit_price
from schemas import CustomerTier

log = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"id": "dairy", "name": "A2 Dairy", "slug": "dairy", "description": "A2 Gir Cow dairy products", "sort_order": 1},
    {"id": "grains", "name": "Grains & Staples", "slug": "grains", "description": "Organic grains and staples", "sort_order": 2},
    {"id": "oils", "name": "Oils & Sweeteners", "slug": "oils", "description": "Cold-pressed oils and natural sweeteners", "sort_order": 3},
]


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def find_product(db: Database, reference: str) -> Optional[dict]:
    """Look a product up by reference: exact id first, then slug.

    Catalog entries are addressed both by database id and by human-chosen
    slugs (e.g. ``dairy-001``); every endpoint accepting a product
    reference goes through here.
    """
    if not reference:
        return None
    return find_by_id(db, "products", reference) or db["products"].find_one({"slug": reference})


def resolve_product(db: Database, reference: str) -> dict:
    product = find_product(db, reference)
    if not product:
        raise ProductNotFound()
    return product


def with_display_price(product: dict, tier: CustomerTier) -> dict:
    p = to_str_id(product)
    p["display_price"] = unit_price(product, tier)
    return p


def list_products(db: Database, tier: CustomerTier, category: Optional[str] = None, featured: bool = False) -> List[dict]:
    query = {"in_stock": True}
    if category:
        query["category"] = category
    if featured:
        query["featured"] = True
    docs = get_documents(db, "products", query, sort=[("created_at", -1)])
    return [with_display_price(p, tier) for p in docs]


def get_product(db: Database, reference: str, tier: CustomerTier) -> dict:
    return with_display_price(resolve_product(db, reference), tier)


def list_categories(db: Database) -> dict:
    if not collection_exists(db, "categories"):
        log.warning("categories collection missing, serving default categories")
        return {"categories": [dict(c) for c in DEFAULT_CATEGORIES], "is_default": True}
    docs = get_documents(db, "categories", sort=[("sort_order", 1)])
    return {"categories": [to_str_id(c) for c in docs]}
