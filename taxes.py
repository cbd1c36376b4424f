"""
Tax calculation.

Rules are evaluated per item in ascending priority. A simple (non-compound)
rule that matches ends evaluation for that item and its amount replaces any
tax accumulated so far; compound rules add up. Every compound rule is computed
on the item's own price x quantity, never on tax already charged. Shipping tax
is independent: every matching shipping rule adds to it.
"""

import logging
from typing import List, Optional

from pymongo import ASCENDING
from pymongo.database import Database

from database import create_document, oid, serialize, update_document, utcnow
from errors import NotFoundError, ValidationError
from schemas import TaxRule, TaxRuleUpdate

logger = logging.getLogger(__name__)


def applicable_rules_query(country: str, region: Optional[str], now) -> dict:
    return {
        "country": country,
        "is_active": True,
        "$and": [
            {"$or": [{"region": "all"}, {"region": region}]},
            {"$or": [{"valid_from": {"$lte": now}}, {"valid_from": None}]},
            {"$or": [{"valid_until": {"$gte": now}}, {"valid_until": None}]},
        ],
    }


def find_applicable_rules(db: Database, country: str, region: Optional[str]) -> List[dict]:
    query = applicable_rules_query(country, region, utcnow())
    # _id keeps equal priorities in creation order
    return list(db["taxrule"].find(query).sort([("priority", ASCENDING), ("_id", ASCENDING)]))


def rule_applies_to_item(rule: dict, item: dict) -> bool:
    applies_to = rule.get("applies_to") or {}
    if not applies_to.get("products", True):
        return False

    product = item.get("product")
    products = rule.get("products") or []
    exceptions = rule.get("exceptions") or []
    if (not products or product in products) and product not in exceptions:
        return True

    categories = rule.get("categories") or []
    return bool(categories) and item.get("category") is not None and item.get("category") in categories


def tax_for_item(item: dict, rules: List[dict]) -> dict:
    item_tax = 0.0
    applied = []
    base = item["price"] * item["quantity"]

    for rule in rules:
        if not rule_applies_to_item(rule, item):
            continue
        tax_amount = base * rule["rate"] / 100
        if rule.get("is_compound"):
            item_tax += tax_amount
        else:
            item_tax = tax_amount
        applied.append({
            "rule_id": str(rule["_id"]),
            "name": rule.get("name"),
            "rate": rule["rate"],
            "amount": round(tax_amount, 2),
        })
        if not rule.get("is_compound"):
            break

    return {
        "product": item.get("product"),
        "quantity": item["quantity"],
        "price": item["price"],
        "tax": round(item_tax, 2),
        "rules": applied,
    }


def compute_taxes(rules: List[dict], items: List[dict], shipping_cost: float = 0, currency: str = "ETB") -> dict:
    """Tax breakdown for already-resolved rules (sorted by priority)."""
    item_taxes = [tax_for_item(item, rules) for item in items]
    products_tax = sum(entry["tax"] for entry in item_taxes)

    shipping_rules = []
    shipping_tax = 0.0
    for rule in rules:
        if not (rule.get("applies_to") or {}).get("shipping"):
            continue
        amount = shipping_cost * rule["rate"] / 100
        shipping_tax += amount
        shipping_rules.append({"rule_id": str(rule["_id"]), "name": rule.get("name"),
                               "rate": rule["rate"], "amount": round(amount, 2)})

    subtotal = sum(item["price"] * item["quantity"] for item in items)
    total_tax = products_tax + shipping_tax
    return {
        "subtotal": round(subtotal, 2),
        "shipping": shipping_cost,
        "tax": {
            "total": round(total_tax, 2),
            "breakdown": {"products": round(products_tax, 2), "shipping": round(shipping_tax, 2)},
            "items": item_taxes,
            "shipping_rules": shipping_rules,
        },
        "total": round(subtotal + shipping_cost + total_tax, 2),
        "currency": currency,
    }


def calculate_taxes(db: Database, items: Optional[List[dict]], shipping_address: Optional[dict],
                    shipping_cost: float = 0, currency: str = "ETB") -> dict:
    if items is None or shipping_address is None:
        raise ValidationError("Please provide items and shipping address")

    country = shipping_address.get("country") or "ET"
    rules = find_applicable_rules(db, country, shipping_address.get("region"))
    return compute_taxes(rules, items, shipping_cost, currency)


def get_tax_rates(db: Database, country: str, region: Optional[str] = None) -> dict:
    rules = find_applicable_rules(db, country.upper(), region)
    return {
        "country": country,
        "region": region or "all",
        "tax_rates": [
            {
                "id": str(rule["_id"]),
                "name": rule.get("name"),
                "tax_type": rule.get("tax_type"),
                "rate": rule.get("rate"),
                "is_compound": rule.get("is_compound", False),
                "applies_to": rule.get("applies_to"),
            }
            for rule in rules
        ],
        "timestamp": utcnow(),
    }


# Rule maintenance

def list_tax_rules(db: Database) -> List[dict]:
    return [serialize(r) for r in db["taxrule"].find().sort([("priority", ASCENDING), ("_id", ASCENDING)])]


def get_tax_rule(db: Database, rule_id: str) -> dict:
    rule = db["taxrule"].find_one({"_id": oid(rule_id)})
    if not rule:
        raise NotFoundError("Tax rule not found")
    return serialize(rule)


def create_tax_rule(db: Database, rule: TaxRule) -> dict:
    if rule.valid_from is None:
        rule = rule.model_copy(update={"valid_from": utcnow()})
    rule_id = create_document(db, "taxrule", rule)
    logger.info("Tax rule %s created: %s %.2f%% (%s, priority %d)",
                rule_id, rule.tax_type, rule.rate, rule.region, rule.priority)
    return get_tax_rule(db, rule_id)


def update_tax_rule(db: Database, rule_id: str, data: TaxRuleUpdate) -> dict:
    get_tax_rule(db, rule_id)
    changes = data.model_dump(exclude_unset=True)
    return serialize(update_document(db, "taxrule", oid(rule_id), changes))


def delete_tax_rule(db: Database, rule_id: str) -> None:
    result = db["taxrule"].delete_one({"_id": oid(rule_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Tax rule not found")
