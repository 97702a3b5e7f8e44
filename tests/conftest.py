import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from catalog import ProductCatalog
from ledger import StockLedger
from orders import ManualOrderComposer, OrderService
from schemas import CustomerInfo, DeliveryInfo, Product, ProductVariant


@pytest.fixture(autouse=True)
def db(monkeypatch):
    test_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


@pytest.fixture
def catalog():
    return ProductCatalog()


@pytest.fixture
def ledger():
    return StockLedger()


@pytest.fixture
def composer():
    return ManualOrderComposer()


@pytest.fixture
def order_service():
    return OrderService()


@pytest.fixture
def simple_product(catalog):
    return catalog.create(Product(name="Ceramic Mug", price=12.5, stock=10, category="Kitchen"))


@pytest.fixture
def variant_product(catalog):
    return catalog.create(Product(
        name="Linen Towel",
        has_variants=True,
        variants=[
            ProductVariant(id="small", name="Small", price=15, stock=4),
            ProductVariant(id="large", name="Large", price=25, sale_price=20, stock=6),
        ],
    ))


@pytest.fixture
def customer():
    return CustomerInfo(first_name="Nino", last_name="Beridze", phone="555123456", email="")


@pytest.fixture
def home_delivery():
    return DeliveryInfo(city=config.HOME_CITY, address="Rustaveli Ave 1")

