import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import CurrentUser
from database import get_db
from main import app
from payments import get_chapa_client
from products import create_product
from schemas import ProductIn


@pytest.fixture
def db():
    """In-memory MongoDB database."""
    return mongomock.MongoClient().db


@pytest.fixture
def customer():
    return CurrentUser(id="customer-1", role="customer")


@pytest.fixture
def seller():
    return CurrentUser(id="seller-1", role="seller")


@pytest.fixture
def admin():
    return CurrentUser(id="admin-1", role="admin")


@pytest.fixture
def make_product(db, seller):
    """Create a product owned by `seller` (or another seller) and return it."""
    def _make(price=1000, stock=10, category=None, owner=None, **fields):
        data = ProductIn(title=fields.pop("title", "Habesha kemis"), price=price, stock=stock,
                         category=category, **fields)
        return create_product(db, owner or seller, data)
    return _make


@pytest.fixture
def client(db):
    """API client bound to the in-memory database; Chapa is not configured."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_chapa_client] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    def _headers(user: CurrentUser) -> dict:
        return {"X-User-Id": user.id, "X-User-Role": user.role}
    return _headers
