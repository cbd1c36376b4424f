"""
Promotion pricing.

A product's selling price is derived from its seller-set base price and the
seller's currently running promotions. The single best promotion wins; there
is no stacking. The result is written back onto every product of the seller.
"""

import logging
from typing import Optional, Tuple

from pymongo.database import Database

from database import utcnow

logger = logging.getLogger(__name__)

RUNNING = "Running"


def calculate_discount(base_price: Optional[float], promotion: Optional[dict]) -> Tuple[float, float]:
    """Return (final_price, discount_percent) for one promotion applied to base_price."""
    final_price = float(base_price or 0)
    percent = 0.0

    if not promotion or base_price is None:
        return final_price, percent

    discount_value = float(promotion.get("discount_value") or 0)
    promo_type = promotion.get("type")

    if promo_type == "percentage":
        percent = max(0.0, min(100.0, discount_value))
        final_price = base_price * (1 - percent / 100)
    elif promo_type == "amount":
        final_price = max(0.0, base_price - discount_value)
        if base_price > 0:
            percent = (base_price - final_price) / base_price * 100
    elif promo_type == "bundle":
        # bundles are quantity deals, the unit price stays put
        final_price = base_price
        percent = 0.0

    final_price = max(0.0, round(final_price, 2))
    percent = round(percent, 2)
    return final_price, percent


def build_promotion_snapshot(promotion: dict) -> dict:
    return {
        "promotion_id": str(promotion["_id"]),
        "title": promotion.get("title"),
        "type": promotion.get("type"),
        "discount_value": promotion.get("discount_value"),
        "start_date": promotion.get("start_date"),
        "end_date": promotion.get("end_date"),
        "status": promotion.get("status"),
    }


def best_price(base_price: float, promotions) -> Tuple[float, float]:
    best, best_percent = base_price, 0.0
    for promotion in promotions:
        final_price, percent = calculate_discount(base_price, promotion)
        if final_price < best:
            best, best_percent = final_price, percent
    return best, best_percent


def price_product(product: dict, running_promotions, snapshots) -> dict:
    """Compute the derived pricing fields for one product document."""
    base_price = product.get("base_price")
    if base_price is None:
        base_price = product.get("price")

    manual_original = product.get("manual_original_price")
    fallback_original = manual_original if manual_original is not None else product.get("original_price")

    changes = {"base_price": base_price}
    if not running_promotions:
        changes.update(price=base_price, promotion_discount_percent=0, active_promotions=[],
                       original_price=fallback_original)
        return changes

    price, percent = best_price(base_price, running_promotions)
    if percent > 0 and price < base_price:
        changes.update(price=price, promotion_discount_percent=percent, original_price=base_price,
                       active_promotions=snapshots)
    else:
        changes.update(price=base_price, promotion_discount_percent=0, active_promotions=snapshots,
                       original_price=fallback_original)
    return changes


def apply_promotions_to_products(db: Database, seller_id: str) -> None:
    """Recompute price, discount and active promotion snapshot for all of a seller's products.

    Each product is saved with its own write. If one fails the error propagates
    and products already written keep their new values.
    """
    promotions = list(db["sellerpromotion"].find({"seller_id": seller_id}))
    running = [p for p in promotions if p.get("status") == RUNNING]
    snapshots = [build_promotion_snapshot(p) for p in running]

    products = list(db["product"].find({"seller_id": seller_id}))
    for product in products:
        changes = price_product(product, running, snapshots)
        changes["updated_at"] = utcnow()
        db["product"].update_one({"_id": product["_id"]}, {"$set": changes})

    logger.info("Repriced %d products for seller %s (%d running promotions)",
                len(products), seller_id, len(running))
