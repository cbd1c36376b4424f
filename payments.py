"""
Payment initiation and provider webhook reconciliation.

Webhooks may be delivered more than once. Once an order's payment is
completed, later deliveries leave it untouched and are still acknowledged so
the provider stops retrying. Every webhook handler returns a (status, body)
pair and never raises.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx
from bson.objectid import ObjectId
from pymongo.database import Database

from auth import CurrentUser
from config import (
    API_URL, BASE_CURRENCY, CHAPA_BASE_URL, CHAPA_LOGO_URL, CHAPA_SECRET_KEY, CLIENT_URL, HTTP_TIMEOUT,
    TELEBIRR_APP_ID, TELEBIRR_APP_KEY, TELEBIRR_MERCHANT_CODE,
)
from database import epoch_millis, oid, serialize, utcnow
from errors import AlreadyPaidError, AuthorizationError, NotFoundError, PaymentProviderError, ValidationError

logger = logging.getLogger(__name__)

WebhookResult = Tuple[int, Dict[str, Any]]


class ChapaClient:
    """Thin wrapper over Chapa's transaction initialize / verify endpoints."""

    def __init__(self, secret_key: str, base_url: str = CHAPA_BASE_URL, client: Optional[httpx.Client] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=HTTP_TIMEOUT)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            response = self._client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Chapa request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            if isinstance(message, dict):
                message = "; ".join(f"{k}: {v}" for k, v in message.items())
            raise PaymentProviderError(message or f"Chapa responded with {response.status_code}",
                                       status_code=response.status_code)
        return body

    def initialize(self, payload: dict) -> dict:
        return self._request("POST", "/transaction/initialize", json=payload)

    def verify(self, tx_ref: str) -> dict:
        return self._request("GET", f"/transaction/verify/{tx_ref}")


def get_chapa_client() -> Optional[ChapaClient]:
    if not CHAPA_SECRET_KEY:
        return None
    return ChapaClient(CHAPA_SECRET_KEY)


def _load_customer_order(db: Database, user: CurrentUser, order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    if order["customer_id"] != user.id:
        raise AuthorizationError("Not authorized to access this order")
    return order


def _payable_order(db: Database, user: CurrentUser, order_id: str) -> dict:
    order = _load_customer_order(db, user, order_id)
    if order.get("payment_status") == "completed":
        raise AlreadyPaidError()
    return order


def _settle(db: Database, order: dict, payment_status: str, details: dict, status: Optional[str] = None) -> bool:
    """Move payment_status and merge details, unless the payment already completed.

    Returns False when a concurrent delivery completed the order first.
    """
    payment_details = dict(order.get("payment_details") or {})
    payment_details.update(details)
    changes = {"payment_status": payment_status, "payment_details": payment_details, "updated_at": utcnow()}
    if status:
        changes["status"] = status
    result = db["order"].update_one(
        {"_id": order["_id"], "payment_status": {"$ne": "completed"}},
        {"$set": changes},
    )
    if result.modified_count:
        logger.info("Order %s payment %s -> %s", order["order_number"], order.get("payment_status"),
                    payment_status)
    return bool(result.modified_count)


def initiate_telebirr(db: Database, user: CurrentUser, order_id: str, phone_number: Optional[str] = None) -> dict:
    order = _payable_order(db, user, order_id)

    now = utcnow()
    request_payload = {
        "app_id": TELEBIRR_APP_ID,
        "app_key": TELEBIRR_APP_KEY,
        "merchant_code": TELEBIRR_MERCHANT_CODE,
        "nonce_str": str(epoch_millis(now)),
        "subject": f"Order #{order['order_number']}",
        "total_amount": str(order["total_amount"]),
        "out_trade_no": order["order_number"],
        "timeout_express": "30m",
        "payee_phone_number": phone_number,
        "notify_url": f"{API_URL}/payments/telebirr/webhook",
        "return_url": f"{CLIENT_URL}/order/{order_id}/success",
    }

    # TeleBirr is mocked: the request is recorded and a fake QR / deep link returned.
    response = {
        "success": True,
        "payment_id": f"TEL_{epoch_millis(now)}",
        "qr_code": "data:image/png;base64,mock_qr_code_here",
        "deep_link": f"telebirr://pay?amount={order['total_amount']}&order={order['order_number']}",
        "message": "Payment initiated successfully. Please confirm in your TeleBirr app.",
    }

    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "payment_method": "telebirr",
        "payment_id": response["payment_id"],
        "payment_status": "processing",
        "payment_details": {"provider": "telebirr", "initiated_at": now, "request": request_payload},
        "updated_at": now,
    }})
    logger.info("TeleBirr payment %s initiated for order %s", response["payment_id"], order["order_number"])
    return response


def _payer_name(db: Database, order: dict):
    customer = None
    if ObjectId.is_valid(order.get("customer_id")):
        customer = db["user"].find_one({"_id": oid(order["customer_id"])})
    display_name = ((order.get("shipping_address") or {}).get("name")
                    or (customer or {}).get("name") or "Customer")
    parts = display_name.strip().split()
    first_name = parts[0] if parts else "Customer"
    last_name = " ".join(parts[1:]) or first_name
    email = (customer or {}).get("email") or "customer@example.com"
    return first_name, last_name, email


def initiate_chapa(db: Database, user: CurrentUser, order_id: str, client: Optional[ChapaClient]) -> dict:
    order = _payable_order(db, user, order_id)

    if client is None:
        raise PaymentProviderError(
            "Chapa secret key is not configured. Please set CHAPA_SECRET_KEY in the backend environment."
        )

    now = utcnow()
    tx_ref = f"CHA-{order['order_number']}-{epoch_millis(now)}"
    first_name, last_name, email = _payer_name(db, order)
    payload = {
        "amount": str(order["total_amount"]),
        "currency": order.get("currency") or BASE_CURRENCY,
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "tx_ref": tx_ref,
        "callback_url": f"{API_URL}/payments/chapa/webhook",
        "return_url": f"{CLIENT_URL}/order/{order_id}/success",
        "customization": {
            "title": f"Order {order['order_number']}",
            "description": f"Payment for order {order['order_number']}",
            "logo": CHAPA_LOGO_URL,
        },
        "meta": {"order_id": order_id, "tx_source": "ethio-shop"},
    }

    response = client.initialize(payload)
    checkout_url = (response.get("data") or {}).get("checkout_url")
    if not checkout_url:
        raise PaymentProviderError(response.get("message") or "Unable to initialize Chapa payment", status_code=400)

    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "payment_method": "chapa",
        "payment_status": "processing",
        "payment_id": tx_ref,
        "payment_details": {
            "provider": "chapa",
            "reference": tx_ref,
            "initiated_at": now,
            "checkout_url": checkout_url,
            "payload": payload,
        },
        "updated_at": now,
    }})
    logger.info("Chapa payment %s initiated for order %s", tx_ref, order["order_number"])
    return {
        "message": response.get("message") or "Redirecting to Chapa for secure payment.",
        "reference": tx_ref,
        "checkout_url": checkout_url,
    }


def chapa_webhook(db: Database, payload: dict, client: Optional[ChapaClient]) -> WebhookResult:
    try:
        tx_ref = (payload or {}).get("tx_ref")
        if not tx_ref:
            return 400, {"success": False, "message": "Transaction reference missing"}

        order = db["order"].find_one({"payment_id": tx_ref})
        if not order:
            logger.warning("Chapa webhook for unknown reference %s", tx_ref)
            return 404, {"success": False, "message": "Order not found"}

        if order.get("payment_status") == "completed":
            logger.info("Chapa webhook replay for completed order %s", order["order_number"])
            return 200, {"success": True}

        if client is None:
            return 500, {"success": False, "message": "Chapa secret key not configured"}

        verification = client.verify(tx_ref)
        verified_status = (verification.get("data") or {}).get("status") or verification.get("status")

        if verified_status and str(verified_status).lower() == "success":
            _settle(db, order, "completed",
                    {"provider": "chapa", "completed_at": utcnow(), "verification": verification},
                    status="confirmed")
        else:
            _settle(db, order, "failed",
                    {"provider": "chapa", "failed_at": utcnow(), "verification": verification})
        return 200, {"success": True}
    except PaymentProviderError as exc:
        logger.warning("Chapa verification failed: %s", exc.message)
        return exc.status_code, {"success": False, "message": exc.message}
    except Exception:
        logger.exception("Chapa webhook handling failed")
        return 500, {"success": False, "message": "Failed to verify Chapa payment"}


def telebirr_webhook(db: Database, payload: dict) -> WebhookResult:
    try:
        payload = payload or {}
        out_trade_no = payload.get("outTradeNo")
        trade_status = payload.get("tradeStatus")
        transaction_id = payload.get("transactionId")

        order = db["order"].find_one({"order_number": out_trade_no}) if out_trade_no else None
        if not order:
            logger.warning("TeleBirr webhook for unknown order %s", out_trade_no)
            return 404, {"success": False, "message": "Order not found"}

        if order.get("payment_status") == "completed":
            logger.info("TeleBirr webhook replay for completed order %s", order["order_number"])
            return 200, {"success": True}

        if trade_status == "SUCCESS":
            _settle(db, order, "completed",
                    {"transaction_id": transaction_id, "paid_at": utcnow(), "gateway": "telebirr"},
                    status="confirmed")
        elif trade_status == "FAILED":
            _settle(db, order, "failed",
                    {"transaction_id": transaction_id, "failed_at": utcnow(), "gateway": "telebirr"})
        else:
            logger.info("TeleBirr webhook status %s for order %s ignored", trade_status, order["order_number"])
        return 200, {"success": True}
    except Exception:
        logger.exception("TeleBirr webhook handling failed")
        return 500, {"success": False, "message": "Failed to process TeleBirr notification"}


def confirm_cod(db: Database, user: CurrentUser, order_id: str) -> dict:
    order = _load_customer_order(db, user, order_id)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "payment_method": "cod",
        "payment_status": "pending",
        "status": "confirmed",
        "updated_at": utcnow(),
    }})
    logger.info("Order %s confirmed for cash on delivery", order["order_number"])
    return {
        "message": "Order confirmed with Cash on Delivery. Payment will be collected upon delivery.",
        "order": serialize(db["order"].find_one({"_id": order["_id"]})),
    }


def process_bank_transfer(db: Database, user: CurrentUser, order_id: str, bank_name: str, account_number: str,
                          transfer_date: Optional[str], reference_number: str) -> dict:
    order = _payable_order(db, user, order_id)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "payment_method": "bank_transfer",
        "payment_status": "processing",
        "payment_id": reference_number,
        "payment_details": {
            "bank_name": bank_name,
            "account_number": account_number,
            "transfer_date": transfer_date,
            "reference_number": reference_number,
            "verified": False,
        },
        "updated_at": utcnow(),
    }})
    logger.info("Bank transfer %s recorded for order %s", reference_number, order["order_number"])
    return {
        "message": "Bank transfer details received. Your order will be processed once payment is verified.",
        "order": serialize(db["order"].find_one({"_id": order["_id"]})),
    }


def verify_bank_transfer(db: Database, admin: CurrentUser, order_id: str, approved: bool = True,
                         note: Optional[str] = None) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    if order.get("payment_method") != "bank_transfer":
        raise ValidationError("No bank transfer recorded for this order")

    details = {"verified": approved, "verified_by": admin.id, "verified_at": utcnow()}
    if note:
        details["note"] = note
    if approved:
        _settle(db, order, "completed", details, status="confirmed")
    else:
        _settle(db, order, "failed", details)
    return serialize(db["order"].find_one({"_id": order["_id"]}))
