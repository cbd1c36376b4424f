import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import currencies
import orders
import payments
import products
import promotions
import taxes
from auth import CurrentUser, get_current_user, require_roles
from config import LOG_LEVEL, PORT
from database import db, ensure_indexes, get_db
from errors import ShopError
from schemas import (
    BankTransferIn, BankTransferVerifyIn, CancelOrderIn, ConvertIn, Currency, CurrencyUpdate, OrderCreate,
    OrderStatusUpdate, PaymentIn, ProductIn, ProductUpdate, PromotionIn, PromotionUpdate, SellerPromotionIn,
    TaxCalculationIn, TaxRule, TaxRuleUpdate, ValidatePromotionIn,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="Ethio Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
def shop_error_handler(request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


seller_or_admin = require_roles("seller", "admin")
admin_only = require_roles("admin")


# Routes
@app.get("/")
def root():
    return {"message": "Ethio Shop API running"}

@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            resp["collections"] = db.list_collection_names()[:10]
            resp["database"] = "✅ Connected & Working"
            resp["connection_status"] = "Connected"
        else:
            resp["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        resp["database"] = f"❌ Error: {str(e)[:80]}"
    return resp


# Products
@app.get("/products")
def list_products(
    category: Optional[str] = None,
    seller_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    database: Database = Depends(get_db),
):
    return products.list_products(database, category, seller_id, page, limit)

@app.get("/products/{product_id}")
def get_product(product_id: str, database: Database = Depends(get_db)):
    return products.get_product(database, product_id)

@app.post("/products", status_code=201)
def create_product(payload: ProductIn, user: CurrentUser = Depends(seller_or_admin),
                   database: Database = Depends(get_db)):
    return products.create_product(database, user, payload)

@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, user: CurrentUser = Depends(seller_or_admin),
                   database: Database = Depends(get_db)):
    return products.update_product(database, user, product_id, payload)

@app.delete("/products/{product_id}")
def delete_product(product_id: str, user: CurrentUser = Depends(seller_or_admin),
                   database: Database = Depends(get_db)):
    products.delete_product(database, user, product_id)
    return {"ok": True}


# Seller promotions
@app.get("/seller/promotions")
def list_seller_promotions(user: CurrentUser = Depends(seller_or_admin), database: Database = Depends(get_db)):
    return promotions.list_seller_promotions(database, user.id)

@app.get("/seller/promotions/{promotion_id}")
def get_seller_promotion(promotion_id: str, user: CurrentUser = Depends(seller_or_admin),
                         database: Database = Depends(get_db)):
    return promotions.get_seller_promotion(database, user.id, promotion_id)

@app.post("/seller/promotions", status_code=201)
def create_seller_promotion(payload: SellerPromotionIn, user: CurrentUser = Depends(seller_or_admin),
                            database: Database = Depends(get_db)):
    return promotions.create_seller_promotion(database, user.id, payload)

@app.put("/seller/promotions/{promotion_id}")
def update_seller_promotion(promotion_id: str, payload: SellerPromotionIn,
                            user: CurrentUser = Depends(seller_or_admin), database: Database = Depends(get_db)):
    return promotions.update_seller_promotion(database, user.id, promotion_id, payload)

@app.delete("/seller/promotions/{promotion_id}", status_code=204)
def delete_seller_promotion(promotion_id: str, user: CurrentUser = Depends(seller_or_admin),
                            database: Database = Depends(get_db)):
    promotions.delete_seller_promotion(database, user.id, promotion_id)


# Promo codes
@app.post("/promotions/validate")
def validate_promotion(payload: ValidatePromotionIn, database: Database = Depends(get_db)):
    items = [line.model_dump() for line in payload.cart_items]
    return promotions.validate_promotion_code(database, payload.code, items, payload.total_amount, payload.user_id)

@app.get("/promotions")
def list_promotions(user: CurrentUser = Depends(seller_or_admin), database: Database = Depends(get_db)):
    return promotions.list_promotion_codes(database, user)

@app.get("/promotions/{promotion_id}")
def get_promotion(promotion_id: str, user: CurrentUser = Depends(seller_or_admin),
                  database: Database = Depends(get_db)):
    return promotions.get_promotion_code(database, user, promotion_id)

@app.post("/promotions", status_code=201)
def create_promotion(payload: PromotionIn, user: CurrentUser = Depends(seller_or_admin),
                     database: Database = Depends(get_db)):
    return promotions.create_promotion_code(database, user, payload)

@app.put("/promotions/{promotion_id}")
def update_promotion(promotion_id: str, payload: PromotionUpdate, user: CurrentUser = Depends(seller_or_admin),
                     database: Database = Depends(get_db)):
    return promotions.update_promotion_code(database, user, promotion_id, payload)

@app.delete("/promotions/{promotion_id}")
def delete_promotion(promotion_id: str, user: CurrentUser = Depends(seller_or_admin),
                     database: Database = Depends(get_db)):
    promotions.delete_promotion_code(database, user, promotion_id)
    return {"ok": True}


# Orders
@app.get("/orders")
def list_orders(user: CurrentUser = Depends(get_current_user), database: Database = Depends(get_db)):
    return orders.list_orders(database, user)

@app.get("/orders/{order_id}")
def get_order(order_id: str, user: CurrentUser = Depends(get_current_user), database: Database = Depends(get_db)):
    return orders.get_order(database, user, order_id)

@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, user: CurrentUser = Depends(get_current_user),
                 database: Database = Depends(get_db)):
    return orders.create_order(database, user.id, payload)

@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, user: CurrentUser = Depends(get_current_user),
                        database: Database = Depends(get_db)):
    return orders.update_order_status(database, user, order_id, payload)

@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: CancelOrderIn, user: CurrentUser = Depends(get_current_user),
                 database: Database = Depends(get_db)):
    return orders.cancel_order(database, user, order_id, payload.cancellation_reason)


# Payments
@app.post("/payments/telebirr")
def initiate_telebirr(payload: PaymentIn, user: CurrentUser = Depends(get_current_user),
                      database: Database = Depends(get_db)):
    return payments.initiate_telebirr(database, user, payload.order_id, payload.phone_number)

@app.post("/payments/chapa")
def initiate_chapa(payload: PaymentIn, user: CurrentUser = Depends(get_current_user),
                   database: Database = Depends(get_db),
                   chapa: Optional[payments.ChapaClient] = Depends(payments.get_chapa_client)):
    return payments.initiate_chapa(database, user, payload.order_id, chapa)

@app.post("/payments/chapa/webhook")
def chapa_webhook(payload: dict, database: Database = Depends(get_db),
                  chapa: Optional[payments.ChapaClient] = Depends(payments.get_chapa_client)):
    status_code, body = payments.chapa_webhook(database, payload, chapa)
    return JSONResponse(status_code=status_code, content=body)

@app.post("/payments/telebirr/webhook")
def telebirr_webhook(payload: dict, database: Database = Depends(get_db)):
    status_code, body = payments.telebirr_webhook(database, payload)
    return JSONResponse(status_code=status_code, content=body)

@app.post("/payments/cod")
def confirm_cod(payload: PaymentIn, user: CurrentUser = Depends(get_current_user),
                database: Database = Depends(get_db)):
    return payments.confirm_cod(database, user, payload.order_id)

@app.post("/payments/bank-transfer")
def process_bank_transfer(payload: BankTransferIn, user: CurrentUser = Depends(get_current_user),
                          database: Database = Depends(get_db)):
    return payments.process_bank_transfer(database, user, payload.order_id, payload.bank_name,
                                          payload.account_number, payload.transfer_date, payload.reference_number)

@app.post("/payments/bank-transfer/{order_id}/verify")
def verify_bank_transfer(order_id: str, payload: BankTransferVerifyIn, user: CurrentUser = Depends(admin_only),
                         database: Database = Depends(get_db)):
    return payments.verify_bank_transfer(database, user, order_id, payload.approved, payload.note)


# Taxes
@app.post("/taxes/calculate")
def calculate_taxes(payload: TaxCalculationIn, database: Database = Depends(get_db)):
    items = [item.model_dump() for item in payload.items] if payload.items is not None else None
    address = payload.shipping_address.model_dump() if payload.shipping_address else None
    return taxes.calculate_taxes(database, items, address, payload.shipping_cost, payload.currency)

@app.get("/taxes/rates/{country}")
def get_tax_rates(country: str, database: Database = Depends(get_db)):
    return taxes.get_tax_rates(database, country)

@app.get("/taxes/rates/{country}/{region}")
def get_regional_tax_rates(country: str, region: str, database: Database = Depends(get_db)):
    return taxes.get_tax_rates(database, country, region)

@app.get("/taxes")
def list_tax_rules(user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    return taxes.list_tax_rules(database)

@app.get("/taxes/{rule_id}")
def get_tax_rule(rule_id: str, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    return taxes.get_tax_rule(database, rule_id)

@app.post("/taxes", status_code=201)
def create_tax_rule(payload: TaxRule, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    return taxes.create_tax_rule(database, payload)

@app.put("/taxes/{rule_id}")
def update_tax_rule(rule_id: str, payload: TaxRuleUpdate, user: CurrentUser = Depends(admin_only),
                    database: Database = Depends(get_db)):
    return taxes.update_tax_rule(database, rule_id, payload)

@app.delete("/taxes/{rule_id}")
def delete_tax_rule(rule_id: str, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    taxes.delete_tax_rule(database, rule_id)
    return {"ok": True}


# Currencies
@app.get("/currencies")
def list_currencies(database: Database = Depends(get_db)):
    return currencies.list_currencies(database)

@app.post("/currencies/convert")
def convert_currency(payload: ConvertIn, database: Database = Depends(get_db)):
    return currencies.convert_currency(database, payload.from_code, payload.to_code, payload.amount)

@app.post("/currencies/update-rates")
def update_exchange_rates(user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db),
                          rate_client: httpx.Client = Depends(currencies.get_rate_client)):
    return currencies.update_exchange_rates(database, rate_client)

@app.get("/currencies/{code}")
def get_currency(code: str, database: Database = Depends(get_db)):
    return currencies.get_currency(database, code)

@app.get("/currencies/{code}/format")
def format_price(code: str, amount: float, database: Database = Depends(get_db)):
    currency = currencies.get_currency(database, code)
    return {"code": currency["code"], "amount": amount, "formatted": currencies.format_price(amount, currency)}

@app.post("/currencies", status_code=201)
def create_currency(payload: Currency, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    return currencies.create_currency(database, payload)

@app.put("/currencies/{code}")
def update_currency(code: str, payload: CurrencyUpdate, user: CurrentUser = Depends(admin_only),
                    database: Database = Depends(get_db)):
    return currencies.update_currency(database, code, payload)

@app.put("/currencies/{code}/set-base")
def set_base_currency(code: str, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    return currencies.set_base_currency(database, code)

@app.delete("/currencies/{code}")
def delete_currency(code: str, user: CurrentUser = Depends(admin_only), database: Database = Depends(get_db)):
    currencies.delete_currency(database, code)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
