from datetime import timedelta

import pytest

from database import utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from promotions import (
    compute_code_discount, create_promotion_code, create_seller_promotion, delete_promotion_code,
    get_seller_promotion, list_promotion_codes, list_seller_promotions, update_promotion_code,
    validate_promotion_code,
)
from schemas import PromotionIn, PromotionUpdate, SellerPromotionIn

CART = [
    {"product_id": "p1", "seller_id": "seller-1", "category": "coffee", "price": 300, "quantity": 2},
    {"product_id": "p2", "seller_id": "seller-2", "category": "spices", "price": 100, "quantity": 4},
]


def promo_code(**fields):
    now = utcnow()
    fields.setdefault("name", "Promo")
    fields.setdefault("type", "percentage")
    fields.setdefault("valid_from", now - timedelta(days=1))
    fields.setdefault("valid_until", now + timedelta(days=7))
    return PromotionIn(**fields)


class TestComputeCodeDiscount:

    def test_percentage_capped(self):
        promotion = {"type": "percentage", "value": 50, "maximum_discount": 200}
        assert compute_code_discount(promotion, CART, 1000)["discount"] == 200

    def test_percentage_on_applicable_items_only(self):
        promotion = {"type": "percentage", "value": 10, "applies_to": "specific_categories", "categories": ["coffee"]}
        assert compute_code_discount(promotion, CART, 1000)["discount"] == 60

    def test_fixed_amount_never_exceeds_total(self):
        assert compute_code_discount({"type": "fixed_amount", "value": 5000}, CART, 1000)["discount"] == 1000

    def test_buy_x_get_y_uses_cheapest_eligible_item(self):
        promotion = {"type": "buy_x_get_y", "buy_quantity": 2, "get_quantity": 1}
        result = compute_code_discount(promotion, CART, 1000)
        assert result["discount"] == 200
        assert result["free_items"] == 2
        assert result["product_id"] == "p2"

    def test_free_shipping(self):
        result = compute_code_discount({"type": "free_shipping"}, CART, 1000)
        assert result == {"discount": 0, "free_shipping": True}

    def test_nothing_applicable(self):
        promotion = {"type": "percentage", "value": 10, "applies_to": "specific_sellers", "sellers": ["seller-9"]}
        with pytest.raises(ValidationError):
            compute_code_discount(promotion, CART, 1000)


class TestValidatePromotionCode:

    def test_valid_code(self, db, admin):
        create_promotion_code(db, admin, promo_code(code="meskel", value=10))
        result = validate_promotion_code(db, "Meskel", CART, 1000)
        assert result["discount"] == 100
        assert result["final_amount"] == 900
        assert result["promotion"]["code"] == "MESKEL"

    def test_unknown_or_expired(self, db, admin):
        now = utcnow()
        create_promotion_code(db, admin, promo_code(code="OLD", valid_from=now - timedelta(days=10),
                                                    valid_until=now - timedelta(days=1)))
        with pytest.raises(NotFoundError):
            validate_promotion_code(db, "OLD", CART, 1000)
        with pytest.raises(NotFoundError):
            validate_promotion_code(db, "NOPE", CART, 1000)

    def test_minimum_order_amount(self, db, admin):
        create_promotion_code(db, admin, promo_code(code="BIG", value=10, minimum_order_amount=5000))
        with pytest.raises(ValidationError):
            validate_promotion_code(db, "BIG", CART, 1000)

    def test_usage_limit(self, db, admin):
        create_promotion_code(db, admin, promo_code(code="ONCE", value=10, usage_limit=1))
        db.promotion.update_one({"code": "ONCE"}, {"$set": {"used_count": 1}})
        with pytest.raises(ValidationError):
            validate_promotion_code(db, "ONCE", CART, 1000)


class TestPromotionCodeAdmin:

    def test_generated_code(self, db, admin):
        created = create_promotion_code(db, admin, promo_code(value=5))
        assert created["code"].startswith("PROMO")
        assert created["created_by"] == admin.id

    def test_duplicate_code(self, db, admin):
        create_promotion_code(db, admin, promo_code(code="DUP"))
        with pytest.raises(ValidationError):
            create_promotion_code(db, admin, promo_code(code="dup"))

    def test_buy_x_get_y_needs_quantities(self, db, admin):
        with pytest.raises(ValidationError):
            create_promotion_code(db, admin, promo_code(type="buy_x_get_y", buy_quantity=2))

    def test_dates_must_be_ordered(self, db, admin):
        now = utcnow()
        with pytest.raises(ValidationError):
            create_promotion_code(db, admin, promo_code(valid_from=now, valid_until=now - timedelta(days=1)))

    def test_seller_codes_are_scoped(self, db, admin, seller):
        create_promotion_code(db, admin, promo_code(code="GLOBAL"))
        mine = create_promotion_code(db, seller, promo_code(code="MINE", scope="global"))
        other = seller.model_copy(update={"id": "seller-2"})
        create_promotion_code(db, other, promo_code(code="THEIRS"))

        assert mine["scope"] == "seller"
        assert sorted(p["code"] for p in list_promotion_codes(db, seller)) == ["GLOBAL", "MINE"]
        assert len(list_promotion_codes(db, admin)) == 3

        with pytest.raises(AuthorizationError):
            update_promotion_code(db, other, mine["id"], PromotionUpdate(value=50))
        with pytest.raises(AuthorizationError):
            delete_promotion_code(db, other, mine["id"])

        updated = update_promotion_code(db, seller, mine["id"], PromotionUpdate(value=50))
        assert updated["value"] == 50
        delete_promotion_code(db, admin, mine["id"])
        assert db.promotion.count_documents({}) == 2


class TestSellerPromotions:

    def test_title_required(self, db, seller):
        with pytest.raises(ValidationError):
            create_seller_promotion(db, seller.id, SellerPromotionIn(discount_value=10))

    def test_scoped_to_seller(self, db, seller):
        promo = create_seller_promotion(db, seller.id, SellerPromotionIn(title="Fasika", discount_value=10))
        assert "seller_id" not in promo
        assert promo["status"] == "Scheduled"
        assert promo["performance"] == 0
        assert len(list_seller_promotions(db, seller.id)) == 1
        assert list_seller_promotions(db, "seller-2") == []
        with pytest.raises(NotFoundError):
            get_seller_promotion(db, "seller-2", promo["id"])
