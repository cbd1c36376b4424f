import logging
from typing import Optional

from pymongo import DESCENDING
from pymongo.database import Database

from auth import CurrentUser
from database import create_document, oid, serialize, utcnow
from errors import AuthorizationError, NotFoundError
from pricing import apply_promotions_to_products
from schemas import Product, ProductIn, ProductUpdate

logger = logging.getLogger(__name__)


def _load_owned(db: Database, user: CurrentUser, product_id: str, action: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise NotFoundError(f"Product not found with id of {product_id}")
    if product.get("seller_id") != user.id and not user.is_admin:
        raise AuthorizationError(f"User {user.id} is not authorized to {action} this product")
    return product


def get_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id)})
    if not product:
        raise NotFoundError(f"Product not found with id of {product_id}")
    return serialize(product)


def list_products(db: Database, category: Optional[str] = None, seller_id: Optional[str] = None,
                  page: int = 1, limit: int = 25) -> dict:
    filt = {}
    if category:
        filt["category"] = category
    if seller_id:
        filt["seller_id"] = seller_id
    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    items = [serialize(p) for p in cursor]
    return {"items": items, "total": total, "page": page, "pages": (total + limit - 1) // limit}


def create_product(db: Database, user: CurrentUser, data: ProductIn) -> dict:
    payload = data.model_dump(exclude={"original_price"})
    product = Product(
        seller_id=user.id,
        base_price=data.price,
        original_price=data.original_price,
        manual_original_price=data.original_price,
        **payload,
    )
    product_id = create_document(db, "product", product)
    logger.info("Seller %s created product %s", user.id, product_id)

    apply_promotions_to_products(db, user.id)
    return get_product(db, product_id)


def update_product(db: Database, user: CurrentUser, product_id: str, data: ProductUpdate) -> dict:
    product = _load_owned(db, user, product_id, "update")

    changes = data.model_dump(exclude_unset=True, exclude={"original_price"})
    if data.price is not None:
        changes["base_price"] = data.price
    if "original_price" in data.model_fields_set:
        changes["manual_original_price"] = data.original_price
    changes["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})

    apply_promotions_to_products(db, product["seller_id"])
    return get_product(db, product_id)


def delete_product(db: Database, user: CurrentUser, product_id: str) -> None:
    product = _load_owned(db, user, product_id, "delete")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product_id, user.id)

    apply_promotions_to_products(db, product["seller_id"])
