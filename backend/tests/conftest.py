"""
Pytest fixtures for weighbridge backend tests.

Provides test database setup, a seeded tenant (site, weighbridge, vehicle,
driver, customer, product, job), a second tenant for isolation tests, and
login helpers for the API.
"""

from decimal import Decimal

import pytest

from weighbridge import create_app
from weighbridge.extensions import db
from weighbridge.models import Customer, Driver, Job, Product, Vehicle
from weighbridge.services import auth_service
from weighbridge.services import permission_service
from weighbridge.services import tenant_service


DEFAULT_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WEIGHBRIDGE_OFFLINE_MODE': False,
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
    """Fresh data for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def offline_mode(app, monkeypatch):
    """Run the engine as an offline site for the duration of a test."""
    monkeypatch.setitem(app.config, 'WEIGHBRIDGE_OFFLINE_MODE', True)
    yield
    # monkeypatch restores the flag


def build_tenant(name: str, code: str, site_prefix: str) -> dict:
    """
    Create a tenant with one site, one two-deck weighbridge, a two-axle
    vehicle (Steer 6000 / Drive 10000), a driver, customer, product and an
    active job. Returns the created rows keyed by kind.
    """
    tenant = tenant_service.create_tenant(name, code)
    auth_service.create_default_roles(tenant.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(tenant.id)

    site = tenant_service.create_site(tenant.id, f"{name} Site", site_prefix)
    weighbridge = tenant_service.create_weighbridge(site.id, "Weighbridge 1", "WB1", total_decks=2)

    vehicle = Vehicle(
        tenant_id=tenant.id,
        registration_number=f"{code}-001",
        tare_weight=Decimal("4000.00"),
        total_axles=2,
        vehicle_type="Truck",
    )
    driver = Driver(tenant_id=tenant.id, name=f"{name} Driver", license_number="HC-1234")
    customer = Customer(tenant_id=tenant.id, name=f"{name} Customer")
    product = Product(tenant_id=tenant.id, code="AGG20", name="20mm Aggregate")
    db.session.add_all([vehicle, driver, customer, product])
    db.session.commit()

    job = Job(
        tenant_id=tenant.id,
        job_number=f"{code}-JOB-1",
        source_site_id=site.id,
        product_id=product.id,
        driver_id=driver.id,
        vehicle_id=vehicle.id,
        customer_id=customer.id,
        status="CREATED",
    )
    db.session.add(job)
    db.session.commit()

    return {
        "tenant": tenant,
        "site": site,
        "weighbridge": weighbridge,
        "vehicle": vehicle,
        "driver": driver,
        "customer": customer,
        "product": product,
        "job": job,
    }


def configure_axles(vehicle_id: int, limits=((1, "Steer", 6000), (2, "Drive", 10000))):
    from weighbridge.services import axle_config_service

    return axle_config_service.set_profile(
        vehicle_id,
        [
            {"axle_number": n, "axle_type": axle_type, "max_allowed_weight": limit}
            for n, axle_type, limit in limits
        ],
    )


@pytest.fixture(scope='function')
def world(db_session):
    """Tenant A with its full reference data set."""
    return build_tenant("Acme Haulage", "ACME", "SITE7")


@pytest.fixture(scope='function')
def other_world(db_session):
    """Tenant B, used to prove cross-tenant isolation."""
    return build_tenant("Beta Quarries", "BETA", "QRY1")


@pytest.fixture(scope='function')
def configured_vehicle(world):
    """World vehicle with its axle profile set."""
    configure_axles(world["vehicle"].id)
    return world["vehicle"]


def make_user(world: dict, role_name: str, username: str | None = None):
    user = auth_service.create_user(
        username=username or role_name,
        email=f"{username or role_name}@{world['tenant'].code.lower()}.test",
        password=DEFAULT_PASSWORD,
        tenant_id=world["tenant"].id,
        site_id=world["site"].id,
    )
    auth_service.assign_role(user.id, role_name)
    return user


def get_auth_token(client, username: str, password: str = DEFAULT_PASSWORD, tenant_id=None) -> str:
    """Helper to get auth token for a user."""
    body = {'username': username, 'password': password}
    if tenant_id is not None:
        body['tenant_id'] = tenant_id
    response = client.post('/api/auth/login', json=body)
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def operator_headers(client, world):
    make_user(world, "operator", "op_a")
    return auth_headers(get_auth_token(client, "op_a", tenant_id=world["tenant"].id))


@pytest.fixture(scope='function')
def admin_headers(client, world):
    make_user(world, "admin", "admin_a")
    return auth_headers(get_auth_token(client, "admin_a", tenant_id=world["tenant"].id))
