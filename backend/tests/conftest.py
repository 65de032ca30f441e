"""
Pytest fixtures for storefront fulfillment tests.

Provides test database setup, users/actors, products, orders and an
authenticated test client.
"""

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import User, Product, Order, OrderItem
from storefront.services.session_service import AuthenticatedUser, create_session


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'TX_RETRY_ATTEMPTS': 3,
    'TX_RETRY_BACKOFF_BASE': 0.0,
    'TX_TIMEOUT_SECONDS': None,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test (schema is kept)."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


def _make_user(session, email, role="customer"):
    user = User(email=email, role=role, is_active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "owner@example.com")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "someone-else@example.com")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin@example.com", role="admin")


@pytest.fixture(scope='function')
def owner_actor(customer):
    return AuthenticatedUser(id=customer.id, role="customer")


@pytest.fixture(scope='function')
def other_actor(other_customer):
    return AuthenticatedUser(id=other_customer.id, role="customer")


@pytest.fixture(scope='function')
def admin_actor(admin):
    return AuthenticatedUser(id=admin.id, role="admin")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: opening stock is set at creation, before any ledger entry exists."""
    counter = {"n": 0}

    def _make(quantity=10, **kwargs):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:03d}",
            "title": f"Product {counter['n']}",
            "price_cents": 10000,
            "quantity": quantity,
            "status": "active",
        }
        fields.update(kwargs)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: items is a list of (product, quantity)."""
    counter = {"n": 0}

    def _make(user, items, status="pending", payment_status="pending"):
        counter["n"] += 1
        order = Order(
            order_number=f"ORD-{counter['n']:05d}",
            user_id=user.id,
            status=status,
            payment_status=payment_status,
        )
        order.items = [
            OrderItem(
                position=i,
                product_id=product.id,
                sku=product.sku,
                quantity=qty,
                unit_price_cents=product.price_cents or 0,
            )
            for i, (product, qty) in enumerate(items, start=1)
        ]
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def p1(make_product):
    """P1 after the O1 sale: 5 on hand before placement, 3 after."""
    return make_product(quantity=3, sku="P1", title="Emerald Pendant")


@pytest.fixture(scope='function')
def o1(make_order, customer, p1):
    """O1: one item {P1, quantity 2}, already confirmed."""
    return make_order(customer, [(p1, 2)], status="confirmed")


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture(scope='function')
def other_headers(other_customer):
    return auth_headers(other_customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)
