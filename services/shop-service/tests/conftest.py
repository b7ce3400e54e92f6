import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SEPAY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-google-client"
os.environ["AI_PROVIDER"] = "openai"
os.environ["SMTP_USER"] = ""
os.environ["CART_MERGE_ON_LOGIN"] = "false"

from decimal import Decimal

import httpx
import pytest
from fakeredis import FakeServer, aioredis as fake_aioredis
from fastapi.testclient import TestClient

from database import SessionLocal, engine, init_db
from dependencies import get_cart_store, get_http_client
from main import app
from models import Base, Product, User
from security import generate_tokens, hash_password
from services.cart_session import CartSessionStore


class UpstreamStub:
    """Routes outbound HTTP calls to canned handlers keyed by host."""

    def __init__(self):
        self.handlers = {}
        self.requests = []

    def on(self, host, handler):
        self.handlers[host] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            return httpx.Response(503, json={"message": f"no stub for {request.url.host}"})
        return handler(request)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def redis_server():
    return FakeServer()


@pytest.fixture
def client(upstream, redis_server):
    # A fresh async client per request keeps each one on the loop that serves it
    app.dependency_overrides[get_http_client] = lambda: httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_cart_store] = lambda: CartSessionStore(
        fake_aioredis.FakeRedis(server=redis_server, decode_responses=True)
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(db):
    init_db()
    return {p.name: p for p in db.query(Product).all()}


def make_user(db, email="buyer@example.com", role="customer", password="secret123"):
    user = User(email=email, password_hash=hash_password(password), full_name="Nguyen Van A", role=role)
    db.add(user)
    db.commit()
    return user


def bearer(user):
    tokens = generate_tokens(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


@pytest.fixture
def customer(db):
    user = make_user(db)
    return user, bearer(user)


@pytest.fixture
def admin(db):
    user = make_user(db, email="admin@example.com", role="admin")
    return user, bearer(user)


SHIPPING_ADDRESS = {
    "fullName": "Nguyen Van A",
    "phone": "0901234567",
    "addressLine": "12 Le Loi",
    "ward": "Ben Nghe",
    "district": "District 1",
    "city": "Ho Chi Minh City",
}


def stock_of(db, product_id):
    db.expire_all()
    return db.query(Product).filter(Product.id == product_id).one().stock_quantity


def as_decimal(value):
    return Decimal(str(value))
