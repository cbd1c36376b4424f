"""
Checkout and order lifecycle.

Stock is checked and then decremented item by item, and restored the same way
on cancellation. None of this is isolated from concurrent checkouts of the
same product: two orders can both pass the stock check before either
decrement lands.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from bson.objectid import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from auth import CurrentUser
from database import create_document, epoch_millis, next_sequence, oid, serialize, utcnow
from errors import AuthorizationError, InsufficientStockError, NotFoundError, ValidationError
from promotions import record_code_use, validate_promotion_code
from schemas import Order, OrderCreate, OrderStatusUpdate
from taxes import calculate_taxes

logger = logging.getLogger(__name__)

SHIPPING_COSTS = {
    "Addis Ababa": 50,
    "Dire Dawa": 100,
    "Harari": 100,
}
DEFAULT_SHIPPING_COST = 150
FREE_SHIPPING_REGION = "Addis Ababa"
FREE_SHIPPING_THRESHOLD = 1000

DELIVERY_DAYS = {
    "Addis Ababa": (1, 2),
    "Dire Dawa": (3, 5),
    "Harari": (3, 5),
}
DEFAULT_DELIVERY_DAYS = (5, 10)

# forward path; cancelled and returned are handled separately
STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered", "returned"]
CANCELLABLE = ("pending", "confirmed")


def calculate_shipping_cost(region: Optional[str], order_amount: float) -> float:
    cost = SHIPPING_COSTS.get(region, DEFAULT_SHIPPING_COST)
    if region == FREE_SHIPPING_REGION and order_amount > FREE_SHIPPING_THRESHOLD:
        cost = 0
    return cost


def calculate_estimated_delivery(region: Optional[str], now=None):
    _, max_days = DELIVERY_DAYS.get(region, DEFAULT_DELIVERY_DAYS)
    return (now or utcnow()) + timedelta(days=max_days)


def generate_order_number(db: Database, now=None) -> str:
    return f"ORD-{epoch_millis(now)}-{next_sequence(db, 'order_number'):06d}"


def recompute_order_total(order: dict) -> float:
    """total = sum(price x quantity) - discount + shipping + tax"""
    subtotal = sum(item["price"] * item["quantity"] for item in order.get("items", []))
    total = (subtotal - (order.get("discount_amount") or 0) + (order.get("shipping_cost") or 0)
             + (order.get("tax_amount") or 0))
    return round(total, 2)


def _populate(db: Database, order: dict) -> dict:
    order = serialize(order)
    customer = None
    if ObjectId.is_valid(order.get("customer_id")):
        customer = db["user"].find_one({"_id": oid(order["customer_id"])}, {"name": 1, "email": 1, "phone": 1})
    order["customer"] = serialize(customer) if customer else {"id": order.get("customer_id")}
    for item in order.get("items", []):
        product = db["product"].find_one({"_id": oid(item["product_id"])}, {"title": 1, "image_url": 1, "seller_id": 1})
        item["product"] = serialize(product) if product else None
    return order


def create_order(db: Database, customer_id: str, data: OrderCreate) -> dict:
    if not data.items:
        raise ValidationError("Please add items to the order")

    # stock is checked against the total quantity of a product across all lines
    wanted = {}
    for requested in data.items:
        wanted[requested.product_id] = wanted.get(requested.product_id, 0) + requested.quantity

    order_items = []
    subtotal = 0.0
    for requested in data.items:
        product = db["product"].find_one({"_id": oid(requested.product_id)})
        if not product:
            raise NotFoundError(f"Product not found: {requested.product_id}")
        if product.get("stock", 0) < wanted[requested.product_id]:
            raise InsufficientStockError(
                f"Insufficient stock for {product.get('title')}. Available: {product.get('stock', 0)}"
            )
        line_total = product["price"] * requested.quantity
        subtotal += line_total
        order_items.append({
            "product_id": requested.product_id,
            "seller_id": product.get("seller_id"),
            "title": product.get("title"),
            "image_url": requested.image_url or product.get("image_url"),
            "category": product.get("category"),
            "price": product["price"],
            "quantity": requested.quantity,
            "subtotal": round(line_total, 2),
        })

    address = data.shipping_address
    shipping_cost = calculate_shipping_cost(address.region, subtotal)

    discount = 0.0
    applied_promotion = None
    if data.promo_code:
        result = validate_promotion_code(db, data.promo_code, order_items, subtotal, customer_id)
        discount = result["discount"]
        applied_promotion = {"code": result["promotion"]["code"], "discount": discount}
        if result["promotion"].get("free_shipping"):
            shipping_cost = 0

    tax_amount = 0.0
    if data.include_tax:
        tax_lines = [{"product": i["product_id"], "category": i["category"], "price": i["price"],
                      "quantity": i["quantity"]} for i in order_items]
        taxes = calculate_taxes(db, tax_lines, address.model_dump(), shipping_cost)
        tax_amount = taxes["tax"]["total"]

    now = utcnow()
    order = Order(
        order_number=generate_order_number(db, now),
        customer_id=customer_id,
        items=order_items,
        subtotal=round(subtotal, 2),
        discount_amount=discount,
        promotion=applied_promotion,
        tax_amount=tax_amount,
        shipping_cost=shipping_cost,
        total_amount=round(subtotal - discount + shipping_cost + tax_amount, 2),
        shipping_address=address,
        payment_method=data.payment_method,
        customer_notes=data.customer_notes,
        estimated_delivery=calculate_estimated_delivery(address.region, now),
    )
    order_id = create_document(db, "order", order)
    logger.info("Order %s (%s) created for %s: total %.2f", order.order_number, order_id, customer_id,
                order.total_amount)

    for item in order_items:
        db["product"].update_one({"_id": oid(item["product_id"])}, {"$inc": {"stock": -item["quantity"]}})
    if applied_promotion:
        record_code_use(db, applied_promotion["code"])

    return _populate(db, db["order"].find_one({"_id": oid(order_id)}))


def _load_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise NotFoundError(f"Order not found with id of {order_id}")
    return order


def seller_owns_order(db: Database, seller_id: str, order: dict) -> bool:
    if any(item.get("seller_id") == seller_id for item in order.get("items", [])):
        return True
    product_ids = [oid(item["product_id"]) for item in order.get("items", []) if item.get("product_id")]
    if not product_ids:
        return False
    return db["product"].count_documents({"_id": {"$in": product_ids}, "seller_id": seller_id}) > 0


def get_order(db: Database, user: CurrentUser, order_id: str) -> dict:
    order = _load_order(db, order_id)
    if not (user.is_admin or order["customer_id"] == user.id or seller_owns_order(db, user.id, order)):
        raise AuthorizationError(f"User {user.id} is not authorized to access this order")
    return _populate(db, order)


def list_orders(db: Database, user: CurrentUser) -> List[dict]:
    if user.is_admin:
        filt = {}
    elif user.is_seller:
        seller_products = [str(p["_id"]) for p in db["product"].find({"seller_id": user.id}, {"_id": 1})]
        filt = {"$or": [{"items.seller_id": user.id}, {"items.product_id": {"$in": seller_products}}]}
    else:
        filt = {"customer_id": user.id}
    return [_populate(db, o) for o in db["order"].find(filt).sort("created_at", DESCENDING)]


def check_status_transition(current: str, new: str) -> None:
    if new == current:
        return
    if new == "cancelled":
        if current not in CANCELLABLE:
            raise ValidationError(f"Order cannot be cancelled in its current status: {current}")
        return
    if current == "cancelled" or current not in STATUS_FLOW:
        raise ValidationError(f"Order status cannot change from {current}")
    if new == "returned" and current != "delivered":
        raise ValidationError("Only delivered orders can be marked as returned")
    if STATUS_FLOW.index(new) < STATUS_FLOW.index(current):
        raise ValidationError(f"Order status cannot move back from {current} to {new}")


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
    return value or None


def _restore_stock(db: Database, order: dict) -> None:
    for item in order["items"]:
        db["product"].update_one({"_id": oid(item["product_id"])}, {"$inc": {"stock": item["quantity"]}})


def update_order_status(db: Database, user: CurrentUser, order_id: str, data: OrderStatusUpdate) -> dict:
    order = _load_order(db, order_id)

    if not (user.is_admin or user.is_seller):
        raise AuthorizationError("Not authorized to update this order")
    if user.is_seller and not seller_owns_order(db, user.id, order):
        raise AuthorizationError("Not authorized to update this order")

    provided = data.model_fields_set
    if not provided:
        raise ValidationError("Please provide at least one field to update")

    changes = {}
    unset = []
    if "status" in provided:
        if not data.status:
            raise ValidationError("Status value is required")
        check_status_transition(order["status"], data.status)
        changes["status"] = data.status
        if data.status == "delivered":
            changes["delivered_at"] = utcnow()
        elif order.get("delivered_at"):
            unset.append("delivered_at")

    for field in ("tracking_number", "carrier", "internal_notes"):
        if field in provided:
            value = _clean(getattr(data, field))
            if value:
                changes[field] = value
            else:
                unset.append(field)

    if changes.get("status") == "cancelled" and order["status"] != "cancelled":
        _restore_stock(db, order)
        changes["cancellation_reason"] = _clean(data.cancellation_reason)

    changes["updated_at"] = utcnow()
    update = {"$set": changes}
    if unset:
        update["$unset"] = {field: "" for field in unset}
    db["order"].update_one({"_id": order["_id"]}, update)

    if "status" in changes and changes["status"] != order["status"]:
        logger.info("Order %s status %s -> %s by %s", order["order_number"], order["status"],
                    changes["status"], user.id)
    return _populate(db, _load_order(db, order_id))


def cancel_order(db: Database, user: CurrentUser, order_id: str, reason: Optional[str] = None) -> dict:
    order = _load_order(db, order_id)

    if order["customer_id"] != user.id and not user.is_admin:
        raise AuthorizationError(f"User {user.id} is not authorized to cancel this order")
    if order["status"] not in CANCELLABLE:
        raise ValidationError(f"Order cannot be cancelled in its current status: {order['status']}")

    _restore_stock(db, order)

    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"status": "cancelled", "cancellation_reason": reason, "updated_at": utcnow()}},
    )
    logger.info("Order %s cancelled by %s, stock restored for %d items", order["order_number"], user.id,
                len(order["items"]))
    return serialize(_load_order(db, order_id))
