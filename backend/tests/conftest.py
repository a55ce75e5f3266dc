"""
Pytest fixtures for retailops backend tests.

Provides an in-memory database, two stores with scoped users, catalog
products, bearer-token headers and a notification dispatcher wired to a
recording channel.
"""

import threading

import pytest

from retailops import create_app
from retailops.config import NotificationConfig
from retailops.extensions import db
from retailops.models import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, Customer, Product, Store, User
from retailops.services.access_service import Principal
from retailops.services.auth_service import issue_token
from retailops.services.notification_service import NotificationDispatcher


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATIONS_ENABLED': False,
        'REPORT_TIMEZONE': 'UTC',
        'NOTIFY_RESPONSE_WAIT_SECONDS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()
        app.extensions["notification_dispatcher"].shutdown(wait=False)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


# =============================================================================
# STORES AND USERS
# =============================================================================


@pytest.fixture(scope='function')
def store_main(db_session):
    store = Store(name="Main Store", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_other(db_session):
    store = Store(name="Branch Store", code="BR1")
    db_session.add(store)
    db_session.commit()
    return store


def _user(db_session, username, role, store=None):
    user = User(
        username=username,
        email=f"{username}@retailops.test",
        role=role,
        store_id=store.id if store else None,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session, store_main):
    return _user(db_session, "manager_main", ROLE_MANAGER, store_main)


@pytest.fixture(scope='function')
def staff_user(db_session, store_main):
    return _user(db_session, "staff_main", ROLE_STAFF, store_main)


@pytest.fixture(scope='function')
def other_staff_user(db_session, store_other):
    return _user(db_session, "staff_branch", ROLE_STAFF, store_other)


@pytest.fixture(scope='function')
def admin(admin_user):
    return Principal.from_user(admin_user)


@pytest.fixture(scope='function')
def staff(staff_user):
    return Principal.from_user(staff_user)


@pytest.fixture(scope='function')
def other_staff(other_staff_user):
    return Principal.from_user(other_staff_user)


def auth_headers(user) -> dict:
    """Authorization header carrying a freshly signed token for user."""
    return {'Authorization': f'Bearer {issue_token(user)}'}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    return auth_headers(manager_user)


@pytest.fixture(scope='function')
def staff_headers(staff_user):
    return auth_headers(staff_user)


@pytest.fixture(scope='function')
def other_staff_headers(other_staff_user):
    return auth_headers(other_staff_user)


# =============================================================================
# CUSTOMERS AND CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def customer(db_session, store_main):
    customer = Customer(
        name="Asha Rao",
        email="asha@example.com",
        phone="+919812344321",
        store_id=store_main.id,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def laptop(db_session, store_main):
    """Rs 500.00, 10 in stock."""
    product = Product(
        store_id=store_main.id,
        sku="LAP-001",
        name="ThinkPad E14",
        brand="Lenovo",
        price_cents=50000,
        stock_quantity=10,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def charger(db_session, store_main):
    """Rs 250.00, 5 in stock."""
    product = Product(
        store_id=store_main.id,
        sku="ACC-001",
        name="USB-C Charger 65W",
        brand="Lenovo",
        price_cents=25000,
        stock_quantity=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def branch_product(db_session, store_other):
    product = Product(
        store_id=store_other.id,
        sku="LAP-900",
        name="Branch Laptop",
        price_cents=90000,
        stock_quantity=3,
    )
    db_session.add(product)
    db_session.commit()
    return product


def stock_of(product_id: int) -> int:
    """Current stock read straight from the database."""
    return db.session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class RecordingChannel:
    """In-memory channel: records events, optionally fails or blocks."""

    def __init__(self, name="whatsapp", *, fail_with=None, block=None):
        self.name = name
        self.events = []
        self.fail_with = fail_with
        self.block = block
        self.configured = True

    def is_configured(self):
        return self.configured

    def send(self, event):
        if self.block is not None:
            self.block.wait(5)
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)


@pytest.fixture(scope='function')
def recording_channel():
    return RecordingChannel()


@pytest.fixture(scope='function')
def dispatcher(app, recording_channel):
    """Enabled dispatcher with a single recording channel, installed on the app."""
    dispatcher = NotificationDispatcher(NotificationConfig(enabled=True, max_workers=2), channels=[recording_channel])
    previous = app.extensions["notification_dispatcher"]
    app.extensions["notification_dispatcher"] = dispatcher
    yield dispatcher
    app.extensions["notification_dispatcher"] = previous
    dispatcher.shutdown(wait=True)


@pytest.fixture(scope='function')
def release():
    """Event used to unblock a RecordingChannel created with block=..."""
    event = threading.Event()
    yield event
    event.set()
