"""
Pytest fixtures for the tea supply backend tests.

Provides test database setup, user fixtures per role, and auth helpers.
"""

import pytest

from teasupply import create_app
from teasupply.extensions import db
from teasupply.services import settings_service, supplier_service
from teasupply.services.auth_service import create_user


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'MAIL_ENABLED': False,
        'SUPPLIER_SWEEP_ENABLED': False,
        'PAYMENT_WEBHOOK_SECRET': None,
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
def unit_price(db_session):
    """Global price per kg of 50.00."""
    return settings_service.set_unit_price("50.00", reason="test setup")


def make_supplier(name="Nimal Perera", email="nimal@example.com", phone="0771234567", **extra):
    data = {"name": name, "email": email, "phone": phone}
    data.update(extra)
    supplier, _ = supplier_service.create_supplier(data, password=PASSWORD)
    return supplier


@pytest.fixture(scope='function')
def supplier(db_session):
    return make_supplier(
        account_number="1234567890",
        account_holder_name="N Perera",
        bank_name="People's Bank",
    )


@pytest.fixture(scope='function')
def other_supplier(db_session):
    return make_supplier(name="Kamala Silva", email="kamala@example.com", phone="0712345678")


@pytest.fixture(scope='function')
def staff(db_session):
    return create_user("Weighing Clerk", "staff@example.com", PASSWORD, "staff")


@pytest.fixture(scope='function')
def manager(db_session):
    return create_user("Factory Manager", "manager@example.com", PASSWORD, "manager")


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("Administrator", "admin@example.com", PASSWORD, "admin")


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def supplier_headers(client, supplier):
    return auth_headers(get_auth_token(client, supplier.email))


@pytest.fixture(scope='function')
def staff_headers(client, staff):
    return auth_headers(get_auth_token(client, staff.email))


@pytest.fixture(scope='function')
def manager_headers(client, manager):
    return auth_headers(get_auth_token(client, manager.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))
