"""
Shared fixtures: an in-memory MongoDB, a fake identity provider and an image
storage that never talks to Cloudinary.
"""

import os
import sys
from pathlib import Path

import mongomock
import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("LOG_LEVEL", "DEBUG")

from errors import AuthenticationError, ExternalServiceError, NotFoundError  # noqa: E402
from identity import ADMIN_CLAIM  # noqa: E402
from storage import CloudinaryImageStorage  # noqa: E402


class FakeIdentityProvider:
    """In-memory stand-in for FirebaseIdentityProvider."""

    def __init__(self):
        self.tokens = {}
        self.accounts = {}
        self.fail_grant = False
        self.ignore_grant = False

    def add_account(self, uid, email, admin=False, token=None, name=None):
        self.accounts[uid] = {
            "uid": uid,
            "email": email,
            "name": name,
            "phone": None,
            "created_at": None,
            "claims": {ADMIN_CLAIM: True} if admin else {},
        }
        if token:
            self.tokens[token] = {"uid": uid, "email": email}

    def _account(self, uid):
        if uid not in self.accounts:
            raise NotFoundError("Account not found")
        account = dict(self.accounts[uid])
        account["is_admin"] = bool(account["claims"].get(ADMIN_CLAIM))
        return account

    def verify(self, token):
        if token not in self.tokens:
            raise AuthenticationError("Invalid or expired token")
        return dict(self.tokens[token])

    def get_account(self, uid):
        return self._account(uid)

    def get_account_by_email(self, email):
        for uid, account in self.accounts.items():
            if account["email"] == email:
                return self._account(uid)
        raise NotFoundError("Account not found")

    def get_claims(self, uid):
        return self._account(uid)["claims"]

    def is_admin(self, uid):
        return self._account(uid)["is_admin"]

    def grant_admin(self, uid):
        if self.fail_grant:
            raise ExternalServiceError("Identity provider failed to set admin claim")
        self._account(uid)
        if not self.ignore_grant:
            self.accounts[uid]["claims"] = {**self.accounts[uid]["claims"], ADMIN_CLAIM: True}

    def revoke_admin(self, uid):
        self._account(uid)
        claims = dict(self.accounts[uid]["claims"])
        claims.pop(ADMIN_CLAIM, None)
        self.accounts[uid]["claims"] = claims

    def list_accounts(self):
        return [self._account(uid) for uid in self.accounts]

    def list_admins(self):
        return [a for a in self.list_accounts() if a["is_admin"]]

    def delete_account(self, uid):
        self._account(uid)
        del self.accounts[uid]


class FakeImageStorage(CloudinaryImageStorage):
    """Runs the real checks; uploads go to a list instead of Cloudinary."""

    def __init__(self):
        super().__init__()
        self.uploaded = []

    def _upload(self, data, public_id):
        self.uploaded.append(public_id)
        return f"https://res.cloudinary.test/{self.folder}/{public_id}"


@pytest.fixture
def mongo_db():
    client = mongomock.MongoClient()
    yield client["regive_test"]
    client.close()


@pytest.fixture
def identity():
    provider = FakeIdentityProvider()
    provider.add_account("user-1", "donor@gmail.com", token="user-token", name="Donor")
    provider.add_account("admin-1", "admin@gmail.com", admin=True, token="admin-token", name="Admin")
    return provider


@pytest.fixture
def image_storage():
    return FakeImageStorage()


@pytest.fixture
def client(mongo_db, identity, image_storage):
    from database import get_db
    from identity import get_identity_provider
    from main import app
    from storage import get_image_storage

    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_image_storage] = lambda: image_storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"Authorization": "Bearer user-token"}


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer admin-token"}
