"""
Pytest fixtures for TiendaPOS backend tests.

Provides test database setup, two tenants with admin users, a cashier,
a product and auth helpers.
"""

import pytest
from tiendapos import create_app
from tiendapos.extensions import db
from tiendapos.models import Organization, Store, User, Role, UserRole, Product, Customer
from tiendapos.services.auth_service import hash_password, create_default_roles
from tiendapos.services import permission_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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

        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Ferreteria Sur", code="SUR", subdomain="sur", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Almacen Norte", code="NORTE", subdomain="norte", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def setup_roles(db_session, org_a, org_b):
    """Permissions plus default roles for both tenants."""
    permission_service.initialize_permissions()
    create_default_roles(org_a.id)
    create_default_roles(org_b.id)
    permission_service.assign_default_role_permissions()
    db_session.commit()


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    store = Store(org_id=org_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    store = Store(org_id=org_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, org, store, username, role_name):
    user = User(
        org_id=org.id,
        store_id=store.id if store else None,
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password(PASSWORD),
    )
    db_session.add(user)
    db_session.commit()

    role = db_session.query(Role).filter_by(org_id=org.id, name=role_name).first()
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_a(db_session, org_a, store_a, setup_roles):
    """Create User A in Organization A with admin role."""
    return _make_user(db_session, org_a, store_a, "user_a", "admin")


@pytest.fixture(scope='function')
def user_b(db_session, org_b, store_b, setup_roles):
    """Create User B in Organization B with admin role."""
    return _make_user(db_session, org_b, store_b, "user_b", "admin")


@pytest.fixture(scope='function')
def cashier_a(db_session, org_a, store_a, setup_roles):
    return _make_user(db_session, org_a, store_a, "cashier_a", "cashier")


@pytest.fixture(scope='function')
def developer(db_session, setup_roles):
    user = User(
        org_id=None,
        username="dev",
        email="dev@example.com",
        password_hash=hash_password(PASSWORD),
        is_developer=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def product_a(db_session, org_a):
    """Create Product in Organization A."""
    product = Product(
        org_id=org_a.id,
        sku="PROD-A-001",
        barcode="7501234567895",
        name="Product A",
        category="Herramientas",
        price_cents=1000,
        stock_quantity=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    """Create Product in Organization B."""
    product = Product(
        org_id=org_b.id,
        sku="PROD-B-001",
        name="Product B",
        price_cents=2000,
        stock_quantity=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, name="Ana Perez", email="ana@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, org_b):
    customer = Customer(org_id=org_b.id, name="Bruno Diaz", email="bruno@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
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


@pytest.fixture(scope='function')
def headers_a(client, user_a):
    return auth_headers(get_auth_token(client, "user_a"))


@pytest.fixture(scope='function')
def headers_b(client, user_b):
    return auth_headers(get_auth_token(client, "user_b"))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_a):
    return auth_headers(get_auth_token(client, "cashier_a"))


@pytest.fixture(scope='function')
def open_session_a(client, headers_a):
    """Open a cash session in Organization A with 10000 cents float."""
    response = client.post('/api/cash/session/open', headers=headers_a, json={
        'opening_amount_cents': 10000,
    })
    assert response.status_code == 201, response.json
    return response.json['session']
