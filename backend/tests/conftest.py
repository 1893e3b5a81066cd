"""
Pytest fixtures for POS backend tests.

Provides test database setup, operator accounts, products and test client.
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import Product
from app.models.auth import ROLE_ADMIN, ROLE_STAFF
from app.services.auth_service import create_user

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'RETRY_BACKOFF_BASE': 0.001,
    })

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
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(username="admin", password=TEST_PASSWORD, name="Admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def staff_user(db_session):
    return create_user(username="staff", password=TEST_PASSWORD, name="Staff", role=ROLE_STAFF)


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", TEST_PASSWORD))


@pytest.fixture(scope='function')
def staff_headers(client, staff_user):
    return auth_headers(get_auth_token(client, "staff", TEST_PASSWORD))


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name=..., price_cents=..., stock=..., has_stock=...)."""
    def _make(name="Coffee", price_cents=1000, stock=10, has_stock=True, category="Drinks", **extra):
        product = Product(
            name=name,
            price_cents=price_cents,
            stock=stock,
            has_stock=has_stock,
            category=category,
            **extra,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
