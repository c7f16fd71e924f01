"""
Pytest fixtures for the literature order backend tests.

Provides the test database, an organization hierarchy, a small catalog,
opening stock at the region and actors for each side of an order.
"""

import pytest
from litorder import create_app
from litorder.actor import Actor, ROLE_ADMIN, ROLE_GROUP, ROLE_LOCALITY, ROLE_REGION
from litorder.extensions import db
from litorder.models import Literature, Organization
from litorder.models.organizations import ORG_TYPE_GROUP, ORG_TYPE_LOCALITY, ORG_TYPE_REGION
from litorder.services import inventory_service, order_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RECEIVE_ON_DELIVERY': True,
        'ENFORCE_ORDER_HIERARCHY': True,
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
def region(db_session):
    org = Organization(name="Central Region", type=ORG_TYPE_REGION, is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def locality(db_session, region):
    org = Organization(name="Riverside Locality", type=ORG_TYPE_LOCALITY, parent_id=region.id, is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def group(db_session, locality):
    org = Organization(name="Tuesday Night Group", type=ORG_TYPE_GROUP, parent_id=locality.id, is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_locality(db_session, region):
    """A locality that is party to none of the test orders."""
    org = Organization(name="Hillside Locality", type=ORG_TYPE_LOCALITY, parent_id=region.id, is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def basic_text(db_session):
    """Literature priced 25.99."""
    lit = Literature(title="Basic Text", category="BOOK", price_cents=2599, is_active=True)
    db_session.add(lit)
    db_session.commit()
    return lit


@pytest.fixture(scope='function')
def pamphlet(db_session):
    lit = Literature(title="Introductory Guide", category="BOOKLET", price_cents=350, is_active=True)
    db_session.add(lit)
    db_session.commit()
    return lit


@pytest.fixture(scope='function')
def retired_title(db_session):
    lit = Literature(title="Old Edition", category="BOOK", price_cents=1000, is_active=False)
    db_session.add(lit)
    db_session.commit()
    return lit


@pytest.fixture(scope='function')
def region_stock(db_session, region, basic_text, pamphlet):
    """Region holds 100 x Basic Text and 50 x Introductory Guide, booked through the ledger."""
    inventory_service.receive_incoming(region.id, basic_text.id, 100, notes="Opening stock")
    inventory_service.receive_incoming(region.id, pamphlet.id, 50, notes="Opening stock")
    db_session.commit()
    return region


@pytest.fixture
def region_user(region):
    return Actor(user_id=1, role=ROLE_REGION, organization_id=region.id)


@pytest.fixture
def locality_user(locality):
    return Actor(user_id=2, role=ROLE_LOCALITY, organization_id=locality.id)


@pytest.fixture
def group_user(group):
    return Actor(user_id=3, role=ROLE_GROUP, organization_id=group.id)


@pytest.fixture
def outsider(other_locality):
    return Actor(user_id=4, role=ROLE_LOCALITY, organization_id=other_locality.id)


@pytest.fixture
def admin():
    return Actor(user_id=99, role=ROLE_ADMIN, organization_id=None)


@pytest.fixture
def draft_order(db_session, region_stock, locality, locality_user, basic_text):
    """Locality orders 10 x Basic Text from the region."""
    return order_service.create_order(
        locality_user,
        from_organization_id=locality.id,
        to_organization_id=region_stock.id,
        items=[{"literature_id": basic_text.id, "quantity": 10}],
    )


def advance(order, *steps):
    """Apply (actor, status) steps in order and return the refreshed order."""
    for actor, status in steps:
        order = order_service.transition_order(actor, order.id, status)
    return order


def record_of(organization_id, literature_id):
    """Fresh stock row (or a zero placeholder) straight from the database."""
    db.session.expire_all()
    return inventory_service.get_inventory(organization_id, literature_id)


def actor_headers(actor: Actor) -> dict:
    """Headers the auth layer would forward for an actor."""
    headers = {'X-User-Id': str(actor.user_id), 'X-User-Role': actor.role}
    if actor.organization_id is not None:
        headers['X-Organization-Id'] = str(actor.organization_id)
    return headers
