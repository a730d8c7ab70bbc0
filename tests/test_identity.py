"""
Tests for the Firebase adapter. The firebase_admin.auth calls are patched.
"""

import json
from unittest.mock import Mock, patch

import pytest
from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

import identity
from errors import AuthenticationError, ExternalServiceError, NotFoundError
from identity import FirebaseIdentityProvider, load_service_account


def user_record(uid, email, claims=None):
    return Mock(
        uid=uid,
        email=email,
        display_name=f"User {uid}",
        phone_number=None,
        custom_claims=claims,
        user_metadata=Mock(creation_timestamp=1700000000000),
    )


class TestFirebaseIdentityProvider:

    def setup_method(self):
        self.provider = FirebaseIdentityProvider(app=None)

    @patch.object(auth, "verify_id_token")
    def test_verify_returns_decoded_claims(self, mock_verify):
        mock_verify.return_value = {"uid": "u1", "email": "u1@gmail.com"}
        assert self.provider.verify("tok")["uid"] == "u1"
        mock_verify.assert_called_once_with("tok", app=None)

    def test_verify_without_token(self):
        with pytest.raises(AuthenticationError):
            self.provider.verify("")

    @patch.object(auth, "verify_id_token")
    def test_verify_invalid_token(self, mock_verify):
        mock_verify.side_effect = auth.InvalidIdTokenError("bad token")
        with pytest.raises(AuthenticationError):
            self.provider.verify("tok")

    @patch.object(auth, "get_user")
    def test_is_admin_reads_fresh_claims(self, mock_get_user):
        mock_get_user.return_value = user_record("u1", "u1@gmail.com", {"admin": True})
        assert self.provider.is_admin("u1") is True
        mock_get_user.return_value = user_record("u1", "u1@gmail.com", None)
        assert self.provider.is_admin("u1") is False
        assert mock_get_user.call_count == 2

    @patch.object(auth, "get_user_by_email")
    def test_missing_account_is_not_found(self, mock_lookup):
        mock_lookup.side_effect = auth.UserNotFoundError("no user")
        with pytest.raises(NotFoundError):
            self.provider.get_account_by_email("ghost@gmail.com")

    @patch.object(auth, "set_custom_user_claims")
    @patch.object(auth, "get_user")
    def test_grant_admin_keeps_existing_claims(self, mock_get_user, mock_set_claims):
        mock_get_user.return_value = user_record("u1", "u1@gmail.com", {"team": "sorting"})
        self.provider.grant_admin("u1")
        mock_set_claims.assert_called_once_with("u1", {"team": "sorting", "admin": True}, app=None)

    @patch.object(auth, "set_custom_user_claims")
    @patch.object(auth, "get_user")
    def test_revoke_admin_keeps_other_claims(self, mock_get_user, mock_set_claims):
        mock_get_user.return_value = user_record("u1", "u1@gmail.com", {"admin": True, "team": "sorting"})
        self.provider.revoke_admin("u1")
        mock_set_claims.assert_called_once_with("u1", {"team": "sorting"}, app=None)

    @patch.object(auth, "set_custom_user_claims")
    @patch.object(auth, "get_user")
    def test_grant_admin_failure(self, mock_get_user, mock_set_claims):
        mock_get_user.return_value = user_record("u1", "u1@gmail.com")
        mock_set_claims.side_effect = firebase_exceptions.UnavailableError("down")
        with pytest.raises(ExternalServiceError):
            self.provider.grant_admin("u1")

    @patch.object(auth, "list_users")
    def test_list_accounts_follows_pages(self, mock_list_users):
        second = Mock(users=[user_record("u2", "u2@gmail.com", {"admin": True})])
        second.get_next_page.return_value = None
        first = Mock(users=[user_record("u1", "u1@gmail.com")])
        first.get_next_page.return_value = second
        mock_list_users.return_value = first

        accounts = self.provider.list_accounts()

        assert [a["uid"] for a in accounts] == ["u1", "u2"]
        assert accounts[0]["created_at"].year == 2023
        assert [a["uid"] for a in self.provider.list_admins()] == ["u2"]

    @patch.object(auth, "delete_user")
    def test_delete_account(self, mock_delete):
        self.provider.delete_account("u1")
        mock_delete.assert_called_once_with("u1", app=None)


def test_load_service_account_restores_newlines(monkeypatch):
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT", json.dumps({"private_key": "line1\\nline2"}))
    assert load_service_account()["private_key"] == "line1\nline2"


def test_load_service_account_from_file(monkeypatch, tmp_path):
    path = tmp_path / "key.json"
    path.write_text(json.dumps({"project_id": "regive"}))
    monkeypatch.delenv("FIREBASE_SERVICE_ACCOUNT", raising=False)
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_FILE", str(path))
    assert load_service_account() == {"project_id": "regive"}


def test_unconfigured_provider(monkeypatch, tmp_path):
    monkeypatch.delenv("FIREBASE_SERVICE_ACCOUNT", raising=False)
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setattr(identity, "_provider", None)
    with patch.object(identity.firebase_admin, "get_app", side_effect=ValueError("no app")):
        with pytest.raises(ExternalServiceError):
            identity.get_identity_provider()
