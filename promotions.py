"""
Seller promotions and checkout promo codes.

Seller promotions change product prices: every create, update or delete
reprices the seller's catalogue. Promo codes never touch product prices; they
are validated against a cart at checkout and turn into an order discount.
Quantity deals (buy X get Y) only exist as promo codes.
"""

import logging
import random
import string
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from auth import CurrentUser
from database import create_document, epoch_millis, oid, serialize, update_document, utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from pricing import apply_promotions_to_products
from schemas import Promotion, PromotionIn, PromotionUpdate, SellerPromotion, SellerPromotionIn

logger = logging.getLogger(__name__)


def format_seller_promotion(doc: dict) -> dict:
    doc = serialize(doc)
    doc.pop("seller_id", None)
    if not isinstance(doc.get("performance"), (int, float)):
        doc["performance"] = 0
    return doc


def list_seller_promotions(db: Database, seller_id: str) -> List[dict]:
    promos = db["sellerpromotion"].find({"seller_id": seller_id}).sort("created_at", DESCENDING)
    return [format_seller_promotion(p) for p in promos]


def _find_seller_promotion(db: Database, seller_id: str, promotion_id: str) -> dict:
    promo = db["sellerpromotion"].find_one({"_id": oid(promotion_id), "seller_id": seller_id})
    if not promo:
        raise NotFoundError("Promotion not found")
    return promo


def get_seller_promotion(db: Database, seller_id: str, promotion_id: str) -> dict:
    return format_seller_promotion(_find_seller_promotion(db, seller_id, promotion_id))


def create_seller_promotion(db: Database, seller_id: str, data: SellerPromotionIn) -> dict:
    fields = data.model_dump(exclude_unset=True, exclude_none=True)
    if "title" not in fields:
        raise ValidationError("Promotion title is required")
    promo_id = create_document(db, "sellerpromotion", SellerPromotion(seller_id=seller_id, **fields))
    logger.info("Seller %s created promotion %s (%s)", seller_id, promo_id, fields.get("status", "Scheduled"))

    apply_promotions_to_products(db, seller_id)
    return get_seller_promotion(db, seller_id, promo_id)


def update_seller_promotion(db: Database, seller_id: str, promotion_id: str, data: SellerPromotionIn) -> dict:
    promo = _find_seller_promotion(db, seller_id, promotion_id)
    changes = data.model_dump(exclude_unset=True)
    if "title" in changes and not changes["title"]:
        raise ValidationError("Promotion title is required")
    updated = update_document(db, "sellerpromotion", promo["_id"], changes)

    apply_promotions_to_products(db, seller_id)
    return format_seller_promotion(updated)


def delete_seller_promotion(db: Database, seller_id: str, promotion_id: str) -> None:
    promo = db["sellerpromotion"].find_one_and_delete({"_id": oid(promotion_id), "seller_id": seller_id})
    if not promo:
        raise NotFoundError("Promotion not found")

    apply_promotions_to_products(db, seller_id)


# Promo codes

def generate_promotion_code() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"PROMO{epoch_millis()}{suffix}"


def _check_code_owner(user: CurrentUser, promotion: dict, action: str) -> None:
    if user.is_seller and promotion.get("created_by") != user.id:
        raise AuthorizationError(f"Not authorized to {action} this promotion")


def list_promotion_codes(db: Database, user: CurrentUser) -> List[dict]:
    filt = {}
    if user.is_seller:
        filt = {"$or": [{"scope": "global"}, {"created_by": user.id}]}
    return [serialize(p) for p in db["promotion"].find(filt).sort("created_at", DESCENDING)]


def _find_promotion_code(db: Database, promotion_id: str) -> dict:
    promotion = db["promotion"].find_one({"_id": oid(promotion_id)})
    if not promotion:
        raise NotFoundError("Promotion not found")
    return promotion


def get_promotion_code(db: Database, user: CurrentUser, promotion_id: str) -> dict:
    promotion = _find_promotion_code(db, promotion_id)
    if promotion.get("scope") == "seller":
        _check_code_owner(user, promotion, "access")
    return serialize(promotion)


def _check_code_shape(fields: dict) -> None:
    if fields.get("type") == "buy_x_get_y" and not (fields.get("buy_quantity") and fields.get("get_quantity")):
        raise ValidationError("buy_quantity and get_quantity are required for buy_x_get_y promotions")
    valid_from, valid_until = fields.get("valid_from"), fields.get("valid_until")
    if valid_from and valid_until and valid_until < valid_from:
        raise ValidationError("valid_until must not be before valid_from")


def create_promotion_code(db: Database, user: CurrentUser, data: PromotionIn) -> dict:
    fields = data.model_dump()
    fields["code"] = (fields.get("code") or generate_promotion_code()).upper()
    if user.is_seller:
        fields["scope"] = "seller"
    _check_code_shape(fields)
    if db["promotion"].find_one({"code": fields["code"]}):
        raise ValidationError(f"Promotion code {fields['code']} already exists")

    promotion_id = create_document(db, "promotion", Promotion(created_by=user.id, **fields))
    logger.info("Promo code %s created by %s", fields["code"], user.id)
    return serialize(db["promotion"].find_one({"_id": oid(promotion_id)}))


def update_promotion_code(db: Database, user: CurrentUser, promotion_id: str, data: PromotionUpdate) -> dict:
    promotion = _find_promotion_code(db, promotion_id)
    _check_code_owner(user, promotion, "update")
    changes = data.model_dump(exclude_unset=True)
    _check_code_shape(dict(promotion, **changes))
    return serialize(update_document(db, "promotion", promotion["_id"], changes))


def delete_promotion_code(db: Database, user: CurrentUser, promotion_id: str) -> None:
    promotion = _find_promotion_code(db, promotion_id)
    _check_code_owner(user, promotion, "delete")
    db["promotion"].delete_one({"_id": promotion["_id"]})


def _item_applies(promotion: dict, item: dict) -> bool:
    applies_to = promotion.get("applies_to", "all_products")
    if applies_to == "all_products":
        return True
    if applies_to == "specific_categories":
        return item.get("category") in promotion.get("categories", [])
    if applies_to == "specific_products":
        return item.get("product_id") in promotion.get("products", [])
    if applies_to == "specific_sellers":
        return item.get("seller_id") in promotion.get("sellers", [])
    return False


def compute_code_discount(promotion: dict, items: List[dict], total_amount: float) -> dict:
    """Discount a promo code grants on the given cart lines. Lines need product_id, price, quantity."""
    applicable = [item for item in items if _item_applies(promotion, item)]
    if not applicable:
        raise ValidationError("Promotion code not applicable to any items in your cart")

    discount = 0.0
    details = {}
    promo_type = promotion["type"]

    if promo_type == "percentage":
        applicable_total = sum(item["price"] * item["quantity"] for item in applicable)
        discount = applicable_total * promotion.get("value", 0) / 100
        maximum = promotion.get("maximum_discount")
        if maximum and discount > maximum:
            discount = maximum
    elif promo_type == "fixed_amount":
        discount = min(promotion.get("value", 0), total_amount)
    elif promo_type == "free_shipping":
        details["free_shipping"] = True
    elif promo_type == "buy_x_get_y":
        buy = promotion.get("buy_quantity") or 0
        get = promotion.get("get_quantity") or 0
        eligible = [item for item in applicable if buy and item["quantity"] >= buy]
        if eligible:
            cheapest = min(eligible, key=lambda item: item["price"])
            free_quantity = min((cheapest["quantity"] // buy) * get, cheapest["quantity"])
            discount = cheapest["price"] * free_quantity
            details["free_items"] = free_quantity
            details["product_id"] = cheapest["product_id"]

    return {"discount": round(discount, 2), **details}


def validate_promotion_code(db: Database, code: str, items: List[dict], total_amount: float,
                            user_id: Optional[str] = None) -> dict:
    now = utcnow()
    promotion = db["promotion"].find_one({
        "code": (code or "").upper(),
        "is_active": True,
        "valid_from": {"$lte": now},
        "valid_until": {"$gte": now},
    })
    if not promotion:
        raise NotFoundError("Invalid or expired promotion code")

    usage_limit = promotion.get("usage_limit")
    if usage_limit and promotion.get("used_count", 0) >= usage_limit:
        raise ValidationError("Promotion code has reached its usage limit")

    minimum = promotion.get("minimum_order_amount", 0)
    if total_amount < minimum:
        raise ValidationError(f"Minimum order amount of {minimum} is required")

    if user_id:
        used = db["order"].count_documents({"customer_id": user_id, "promotion.code": promotion["code"]})
        if used >= promotion.get("user_usage_limit", 1):
            raise ValidationError("You have already used this promotion code")

    result = compute_code_discount(promotion, items, total_amount)
    return {
        "promotion": {
            "id": str(promotion["_id"]),
            "name": promotion.get("name"),
            "code": promotion["code"],
            "type": promotion["type"],
            "value": promotion.get("value"),
            "minimum_order_amount": minimum,
            "maximum_discount": promotion.get("maximum_discount"),
            **{k: v for k, v in result.items() if k != "discount"},
        },
        "discount": result["discount"],
        "final_amount": round(total_amount - result["discount"], 2),
    }


def record_code_use(db: Database, code: str) -> None:
    db["promotion"].update_one({"code": code}, {"$inc": {"used_count": 1}})
