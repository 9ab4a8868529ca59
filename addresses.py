from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, find_by_id, now, to_str_id
from errors import AddressNotFound
from schemas import Address


def list_addresses(db: Database, user_id: str) -> List[dict]:
    docs = db["addresses"].find({"user_id": user_id}).sort([("is_default", -1), ("created_at", 1)])
    return [to_str_id(d) for d in docs]


def get_address(db: Database, user_id: str, address_id: str) -> dict:
    doc = find_by_id(db, "addresses", address_id, user_id=user_id)
    if not doc:
        raise AddressNotFound()
    return doc


def _unset_defaults(db: Database, user_id: str) -> None:
    # Not transactional with the following write
    db["addresses"].update_many({"user_id": user_id}, {"$set": {"is_default": False}})


def add_address(db: Database, user_id: str, line1: str, city: str, state: str, postal_code: str,
                label: Optional[str] = None, line2: Optional[str] = None, is_default: bool = False) -> dict:
    address = Address(user_id=user_id, label=label, line1=line1, line2=line2, city=city,
                      state=state, postal_code=postal_code, is_default=is_default)
    if is_default:
        _unset_defaults(db, user_id)
    return to_str_id(create_document(db, "addresses", address))


def update_address(db: Database, user_id: str, address_id: str, changes: dict) -> dict:
    current = get_address(db, user_id, address_id)
    if changes.get("is_default"):
        _unset_defaults(db, user_id)
    changes["updated_at"] = now()
    doc = db["addresses"].find_one_and_update(
        {"_id": current["_id"], "user_id": user_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise AddressNotFound()
    return to_str_id(doc)


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    current = get_address(db, user_id, address_id)
    db["addresses"].delete_one({"_id": current["_id"], "user_id": user_id})
