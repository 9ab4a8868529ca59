import json
import hmac
import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, find_by_id, now, to_str_id
from addresses import list_addresses
from errors import NotFound, Unauthorized, ValidationFailed
from schemas import CustomerTier, Profile

log = logging.getLogger(__name__)


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()

def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)

def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{header_b64}.{payload_b64}.{_b64url_encode(signature)}"

def jwt_decode(token: str, secret: str) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split('.')
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64url_encode(expected_sig), sig_b64):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64url_decode(payload_b64))
        if 'exp' in payload:
            exp = datetime.fromisoformat(payload['exp']) if isinstance(payload['exp'], str) else datetime.fromtimestamp(payload['exp'], tz=timezone.utc)
            if datetime.now(timezone.utc) > exp:
                raise ValueError("Token expired")
        return payload
    except Exception as e:
        raise ValueError(str(e))


def hash_password(password: str) -> str:
    return hashlib.sha256((password + config.PWD_SALT).encode()).hexdigest()

def verify_password(password: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_password(password), hashed)


def create_session(user_id: str, expires_delta: Optional[timedelta] = None) -> dict:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    expires_at = int(expire.timestamp())
    token = jwt_encode({"sub": user_id, "exp": expires_at}, config.JWT_SECRET)
    return {"access_token": token, "token_type": "bearer", "expires_at": expires_at}


class CurrentUser(BaseModel):
    """The caller of a request, resolved from its bearer token."""
    id: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    customer_tier: CustomerTier = CustomerTier.individual
    is_admin: bool = False


def resolve_identity(db: Database, token: Optional[str]) -> Optional[CurrentUser]:
    """Map a bearer token to the caller, or None when the token is absent or invalid."""
    if not token:
        return None
    try:
        payload = jwt_decode(token, config.JWT_SECRET)
    except ValueError as e:
        log.info("Rejected bearer token: %s", e)
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    profile = find_by_id(db, "profiles", user_id)
    if not profile:
        return None
    return CurrentUser(
        id=user_id,
        email=profile["email"],
        full_name=profile.get("full_name"),
        phone=profile.get("phone"),
        customer_tier=profile.get("customer_tier") or CustomerTier.individual,
        is_admin=profile.get("is_admin") is True,
    )


def register(db: Database, email: str, password: str, full_name: str, phone: str,
             customer_tier: CustomerTier = CustomerTier.individual,
             business_name: Optional[str] = None, tax_id: Optional[str] = None) -> dict:
    if customer_tier == CustomerTier.business and (not business_name or not tax_id):
        raise ValidationFailed("Business name and tax id are required for business accounts")
    email = email.lower()
    if db["users"].find_one({"email": email}):
        raise ValidationFailed("Email already in use")
    try:
        res = db["users"].insert_one({
            "email": email,
            "password_hash": hash_password(password),
            "created_at": now(),
        })
    except DuplicateKeyError:
        raise ValidationFailed("Email already in use")

    is_business = customer_tier == CustomerTier.business
    profile = Profile(
        email=email,
        full_name=full_name,
        phone=phone,
        customer_tier=customer_tier,
        business_name=business_name if is_business else None,
        tax_id=tax_id if is_business else None,
    )
    doc = profile.model_dump(mode="json")
    doc["_id"] = res.inserted_id
    doc = create_document(db, "profiles", doc)
    log.info("Registered %s account %s", customer_tier.value, res.inserted_id)
    return {"user": to_str_id(doc), "session": create_session(str(res.inserted_id))}


def login(db: Database, email: str, password: str) -> dict:
    user = db["users"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    profile = db["profiles"].find_one({"_id": user["_id"]}) or {"_id": user["_id"], "email": user["email"]}
    return {"user": to_str_id(profile), "session": create_session(str(user["_id"]))}


def me(db: Database, user: CurrentUser) -> dict:
    profile = find_by_id(db, "profiles", user.id)
    if not profile:
        raise NotFound("Profile not found")
    data = to_str_id(profile)
    data["addresses"] = list_addresses(db, user.id)
    return data
