"""
Currencies and exchange rates.

Rates are stored relative to the base currency (whose own rate is 1), so every
conversion goes through the base. Exactly one currency is the base.
"""

import logging
from typing import List, Optional

import httpx
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from config import EXCHANGE_RATE_API_URL, HTTP_TIMEOUT
from database import create_document, get_documents, serialize, update_document, utcnow
from errors import BaseCurrencyDeletionError, ExchangeRateProviderError, NotFoundError, ValidationError
from schemas import Currency, CurrencyUpdate

logger = logging.getLogger(__name__)


def convert_amount(amount: float, from_currency: dict, to_currency: dict) -> float:
    if from_currency["code"] == to_currency["code"]:
        return amount
    return amount / from_currency["exchange_rate"] * to_currency["exchange_rate"]


def format_price(amount: float, currency: dict) -> str:
    decimal_places = currency.get("decimal_places", 2)
    fmt = {"symbol_position": "before", "thousand_separator": ",", "decimal_separator": ".",
           "space_between": False}
    fmt.update(currency.get("formatting") or {})

    number = f"{abs(round(amount, decimal_places)):,.{decimal_places}f}"
    # swap through a placeholder so "," and "." can trade places
    number = (number.replace(",", "\0").replace(".", fmt["decimal_separator"])
              .replace("\0", fmt["thousand_separator"]))

    space = " " if fmt["space_between"] else ""
    symbol = currency.get("symbol", "")
    text = f"{symbol}{space}{number}" if fmt["symbol_position"] == "before" else f"{number}{space}{symbol}"
    return f"-{text}" if amount < 0 else text


def list_currencies(db: Database) -> List[dict]:
    return [serialize(c) for c in get_documents(db, "currency", {"is_active": True}, sort=[("code", ASCENDING)])]


def _find(db: Database, code: str) -> dict:
    currency = db["currency"].find_one({"code": (code or "").upper()})
    if not currency:
        raise NotFoundError("Currency not found")
    return currency


def get_currency(db: Database, code: str) -> dict:
    return serialize(_find(db, code))


def get_base_currency(db: Database) -> Optional[dict]:
    # newest first, so a switch in flight resolves to the incoming base
    return db["currency"].find_one({"is_base_currency": True}, sort=[("last_updated", DESCENDING)])


def set_base_currency(db: Database, code: str) -> dict:
    """Make `code` the base currency: its rate becomes 1 and every other base flag is cleared.

    The target is flagged before the others are cleared, in two writes. Between
    them two currencies carry the flag; there is never a moment with none.
    """
    currency = _find(db, code)
    now = utcnow()
    db["currency"].update_one(
        {"_id": currency["_id"]},
        {"$set": {"is_base_currency": True, "exchange_rate": 1, "last_updated": now, "updated_at": now}},
    )
    db["currency"].update_many(
        {"_id": {"$ne": currency["_id"]}, "is_base_currency": True},
        {"$set": {"is_base_currency": False, "updated_at": now}},
    )
    logger.info("Base currency set to %s", currency["code"])
    return get_currency(db, code)


def create_currency(db: Database, data: Currency) -> dict:
    code = data.code.upper()
    if db["currency"].find_one({"code": code}):
        raise ValidationError(f"Currency {code} already exists")

    make_base = data.is_base_currency or get_base_currency(db) is None
    currency = data.model_copy(update={"code": code, "is_base_currency": False,
                                       "last_updated": data.last_updated or utcnow()})
    create_document(db, "currency", currency)
    if make_base:
        return set_base_currency(db, code)
    return get_currency(db, code)


def update_currency(db: Database, code: str, data: CurrencyUpdate) -> dict:
    currency = _find(db, code)
    changes = data.model_dump(exclude_unset=True)
    make_base = changes.pop("is_base_currency", None)

    if make_base is False and currency.get("is_base_currency"):
        raise ValidationError("Set another currency as base instead of clearing the base flag")
    if currency.get("is_base_currency") and changes.get("exchange_rate", 1) != 1:
        raise ValidationError("Base currency exchange rate is always 1")
    if "exchange_rate" in changes:
        changes["last_updated"] = utcnow()

    if changes:
        update_document(db, "currency", currency["_id"], changes)
    if make_base and not currency.get("is_base_currency"):
        return set_base_currency(db, code)
    return get_currency(db, code)


def delete_currency(db: Database, code: str) -> None:
    currency = _find(db, code)
    if currency.get("is_base_currency"):
        raise BaseCurrencyDeletionError()
    db["currency"].delete_one({"_id": currency["_id"]})
    logger.info("Currency %s deleted", currency["code"])


def convert_currency(db: Database, from_code: Optional[str], to_code: Optional[str], amount: Optional[float]) -> dict:
    if not from_code or not to_code or not amount:
        raise ValidationError("Please provide from, to, and amount")

    from_currency = db["currency"].find_one({"code": from_code.upper(), "is_active": True})
    to_currency = db["currency"].find_one({"code": to_code.upper(), "is_active": True})
    if not from_currency or not to_currency:
        raise ValidationError("Invalid currency code")

    converted = convert_amount(amount, from_currency, to_currency)
    return {
        "from": from_currency["code"],
        "to": to_currency["code"],
        "original_amount": float(amount),
        "converted_amount": round(converted, to_currency.get("decimal_places", 2)),
        "exchange_rate": to_currency["exchange_rate"] / from_currency["exchange_rate"],
        "timestamp": utcnow(),
    }


def get_rate_client() -> httpx.Client:
    return httpx.Client(timeout=HTTP_TIMEOUT)


def update_exchange_rates(db: Database, client: Optional[httpx.Client] = None) -> dict:
    base = get_base_currency(db)
    if not base:
        raise NotFoundError("Base currency not found")

    http = client or get_rate_client()
    try:
        response = http.get(f"{EXCHANGE_RATE_API_URL.rstrip('/')}/{base['code']}")
        response.raise_for_status()
        rates = response.json().get("rates") or {}
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Exchange rate refresh for %s failed: %s", base["code"], exc)
        raise ExchangeRateProviderError("Failed to update exchange rates") from exc

    now = utcnow()
    updated = 0
    for currency in db["currency"].find({"is_active": True, "is_base_currency": {"$ne": True}}):
        rate = rates.get(currency["code"])
        if rate:
            db["currency"].update_one({"_id": currency["_id"]},
                                      {"$set": {"exchange_rate": rate, "last_updated": now, "updated_at": now}})
            updated += 1

    logger.info("Exchange rates refreshed against %s: %d currencies updated", base["code"], updated)
    return {"base": base["code"], "updated": updated, "timestamp": now}
