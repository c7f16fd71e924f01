# Overview: Pytest coverage for model-level constraints and serialization.

import pytest
from sqlalchemy.exc import IntegrityError

from litorder.models import Organization
from litorder.models.organizations import ORGANIZATION_TYPES


class TestOrganization:

    @pytest.mark.parametrize("org_type", ORGANIZATION_TYPES)
    def test_known_types_are_stored(self, db_session, org_type):
        org = Organization(name=f"{org_type} org", type=org_type)
        db_session.add(org)
        db_session.commit()
        assert org.to_dict()["type"] == org_type

    def test_unknown_type_is_rejected(self, db_session):
        db_session.add(Organization(name="Area Office", type="AREA"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestOrderFlags:

    def test_lock_flag_in_payload(self, db_session, draft_order):
        data = draft_order.to_dict(include_items=False)
        assert data["is_locked"] is False
        assert data["locked_at"] is None
