"""
Online payment through Razorpay.

``create_intent`` opens a gateway order sized to an order total; the
checkout widget then hands the client a payment id and a signature, which
``verify_callback`` checks before the order is marked paid.
"""
import hashlib
import hmac
import logging
from typing import Optional

import requests
from pymongo import ReturnDocument
from pymongo.database import Database

import config
from database import find_by_id, now, to_str_id
from errors import AlreadyPaid, InvalidSignature, OrderNotFound, UpstreamError, WrongMethod
from schemas import OrderStatus, PaymentMethod, PaymentStatus

log = logging.getLogger(__name__)


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, api_url: str = config.RAZORPAY_API_URL,
                 currency: str = config.PAYMENT_CURRENCY, timeout: float = config.GATEWAY_TIMEOUT_SECONDS):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout

    def create_order(self, amount: int, receipt: str, notes: dict) -> dict:
        """Create a gateway order for ``amount`` minor currency units."""
        if not self.key_id or not self.key_secret:
            raise UpstreamError("Payment gateway is not configured")
        payload = {"amount": amount, "currency": self.currency, "receipt": receipt, "notes": notes}
        try:
            resp = requests.post(f"{self.api_url}/orders", json=payload,
                                 auth=(self.key_id, self.key_secret), timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Payment gateway unreachable: {e}")
        if not resp.ok:
            try:
                message = resp.json().get("error", {}).get("description") or resp.text
            except ValueError:
                message = resp.text
            raise UpstreamError(f"Payment gateway error: {message}")
        return resp.json()

    def signature(self, intent_id: str, payment_id: str) -> str:
        body = f"{intent_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), body, hashlib.sha256).hexdigest()

    def verify_signature(self, intent_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            return False
        return hmac.compare_digest(self.signature(intent_id, payment_id).encode(), signature.encode())


def default_gateway() -> RazorpayGateway:
    return RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)


def create_intent(db: Database, gateway: RazorpayGateway, owner: str, order_id: str) -> dict:
    order = find_by_id(db, "orders", order_id, user_id=owner)
    if not order:
        raise OrderNotFound()
    if order.get("payment_status") == PaymentStatus.paid.value:
        raise AlreadyPaid()
    if order.get("payment_method") != PaymentMethod.razorpay.value:
        raise WrongMethod()

    amount = round(float(order["total"]) * 100)
    intent = gateway.create_order(
        amount=amount,
        receipt=order["order_number"],
        notes={"order_id": str(order["_id"]), "user_id": owner},
    )
    db["orders"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_intent_id": intent["id"], "updated_at": now()}},
    )
    log.info("Payment intent %s created for order %s (%s minor units)", intent["id"], order["order_number"], amount)

    profile = find_by_id(db, "profiles", owner) or {}
    return {
        "razorpay_order_id": intent["id"],
        "razorpay_key": gateway.key_id,
        "amount": intent.get("amount", amount),
        "currency": intent.get("currency", gateway.currency),
        "order_number": order["order_number"],
        "prefill": {
            "name": profile.get("full_name"),
            "email": profile.get("email"),
            "contact": profile.get("phone"),
        },
    }


def verify_callback(db: Database, gateway: RazorpayGateway, owner: str, intent_id: str,
                    payment_id: str, signature: Optional[str]) -> dict:
    if not signature or not gateway.verify_signature(intent_id, payment_id, signature):
        log.warning("Rejected payment callback for intent %s from %s: bad signature", intent_id, owner)
        raise InvalidSignature()

    order = db["orders"].find_one_and_update(
        {"payment_intent_id": intent_id, "user_id": owner},
        {"$set": {
            "payment_status": PaymentStatus.paid.value,
            "order_status": OrderStatus.confirmed.value,
            "payment_id": payment_id,
            "updated_at": now(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise OrderNotFound()
    log.info("Payment %s verified for order %s", payment_id, order["order_number"])
    order = to_str_id(order)
    return {
        "id": order["id"],
        "order_number": order["order_number"],
        "payment_status": order["payment_status"],
        "order_status": order["order_status"],
    }
