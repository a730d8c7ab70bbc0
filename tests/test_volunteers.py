"""
Tests for join-team intake and promotion.
"""

from unittest.mock import patch

import pytest
from bson import ObjectId
from mongomock.collection import Collection
from pymongo.errors import PyMongoError
from pydantic import ValidationError as SchemaValidationError

from database import COLLECTION_JOIN_REQUESTS
from errors import ExternalServiceError, NotFoundError, StorageError
from schemas import JoinTeamApplication
from volunteers import VolunteerIntake


def application(**overrides):
    data = {
        "name": "Kiran",
        "email": "Kiran@Gmail.com",
        "phone": "99999",
        "department": "CSE",
        "year": "2",
        "interest": "sorting",
        "message": "Happy to help on weekends",
    }
    data.update(overrides)
    return JoinTeamApplication(**data)


@pytest.fixture
def intake(mongo_db, identity):
    identity.add_account("vol-1", "kiran@gmail.com")
    return VolunteerIntake(mongo_db, identity)


def test_apply_stores_pending_request_with_lowercased_email(intake, mongo_db):
    request_id = intake.apply(application())

    stored = mongo_db[COLLECTION_JOIN_REQUESTS].find_one({"_id": ObjectId(request_id)})
    assert stored["email"] == "kiran@gmail.com"
    assert stored["status"] == "pending"
    assert intake.count() == 1


@pytest.mark.parametrize("field,value", [("year", "5"), ("interest", "cooking")])
def test_application_rejects_values_outside_enums(field, value):
    with pytest.raises(SchemaValidationError):
        application(**{field: value})


def test_approve_promotes_and_deletes(intake, identity, mongo_db):
    request_id = intake.apply(application())

    account = intake.approve(request_id)

    assert account["uid"] == "vol-1"
    assert identity.is_admin("vol-1")
    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({}) == 0


def test_approve_without_account_keeps_request(intake, identity, mongo_db):
    request_id = intake.apply(application(email="nobody@gmail.com"))

    with pytest.raises(NotFoundError):
        intake.approve(request_id)

    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({}) == 1


def test_approve_keeps_request_when_grant_fails(intake, identity, mongo_db):
    request_id = intake.apply(application())
    identity.fail_grant = True

    with pytest.raises(ExternalServiceError):
        intake.approve(request_id)

    assert not identity.is_admin("vol-1")
    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({}) == 1


def test_approve_verifies_claim_before_deleting(intake, identity, mongo_db):
    request_id = intake.apply(application())
    identity.ignore_grant = True

    with pytest.raises(ExternalServiceError):
        intake.approve(request_id)

    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({}) == 1


def test_approve_revokes_claim_when_request_delete_fails(intake, identity, mongo_db):
    request_id = intake.apply(application())

    with patch.object(Collection, "delete_one", side_effect=PyMongoError("primary stepped down")):
        with pytest.raises(StorageError):
            intake.approve(request_id)

    assert not identity.is_admin("vol-1")
    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({}) == 1


def test_approve_unknown_request(intake):
    with pytest.raises(NotFoundError):
        intake.approve(str(ObjectId()))


def test_reject_keeps_record(intake, mongo_db):
    request_id = intake.apply(application())

    updated = intake.reject(request_id)

    assert updated["status"] == "rejected"
    assert mongo_db[COLLECTION_JOIN_REQUESTS].count_documents({"status": "rejected"}) == 1


def test_reject_unknown_request(intake):
    with pytest.raises(NotFoundError):
        intake.reject(str(ObjectId()))


def test_delete_and_list(intake):
    first = intake.apply(application())
    intake.apply(application(name="Lata", email="lata@gmail.com"))

    intake.delete(first)

    assert [r["name"] for r in intake.list()] == ["Lata"]
    with pytest.raises(NotFoundError):
        intake.delete(first)
