"""
Tier pricing and order totals.

Business customers pay a product's ``b2b_price`` when one is set, everyone
else pays ``price``. Delivery is a flat fee waived once the subtotal
reaches the free-delivery threshold.
"""
from typing import Iterable, List, Tuple

from pydantic import BaseModel

import config
from errors import OutOfStock, QuantityTooLow
from schemas import CustomerTier


class PricedLine(BaseModel):
    product: dict
    quantity: int
    unit_price: float
    total_price: float


class Quote(BaseModel):
    lines: List[PricedLine]
    subtotal: float
    delivery_fee: float
    total: float
    item_count: int


def unit_price(product: dict, tier: CustomerTier) -> float:
    if tier == CustomerTier.business and product.get("b2b_price"):
        return float(product["b2b_price"])
    return float(product["price"])


def delivery_fee(subtotal: float) -> float:
    return 0.0 if subtotal >= config.FREE_DELIVERY_THRESHOLD else float(config.DELIVERY_FEE)


def check_line(product: dict, quantity: int) -> None:
    if not product.get("in_stock", False):
        raise OutOfStock(product.get("name", "Product"))
    moq = int(product.get("moq") or 1)
    if quantity < moq:
        raise QuantityTooLow(moq)


def quote(lines: Iterable[Tuple[dict, int]], tier: CustomerTier, strict: bool = True) -> Quote:
    """Price ``(product, quantity)`` pairs for a customer tier.

    With ``strict`` every line must be purchasable (in stock, at or above
    MOQ); listings pass ``strict=False`` to show a cart as it currently is.
    """
    priced = []
    for product, quantity in lines:
        if strict:
            check_line(product, quantity)
        price = unit_price(product, tier)
        priced.append(PricedLine(
            product=product,
            quantity=quantity,
            unit_price=price,
            total_price=round(price * quantity, 2),
        ))
    subtotal = round(sum(line.total_price for line in priced), 2)
    fee = delivery_fee(subtotal)
    return Quote(
        lines=priced,
        subtotal=subtotal,
        delivery_fee=fee,
        total=round(subtotal + fee, 2),
        item_count=sum(line.quantity for line in priced),
    )
