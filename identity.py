"""
Identity provider adapter over Firebase Admin.

Accounts are returned as plain dicts so the rest of the app never touches
firebase_admin types. The admin capability is read from the account's custom
claims on every call; nothing is cached between requests.
"""
import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin import exceptions as firebase_exceptions

from errors import AuthenticationError, ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)

ADMIN_CLAIM = "admin"
PAGE_SIZE = 1000


def load_service_account() -> Optional[dict]:
    raw = os.getenv("FIREBASE_SERVICE_ACCOUNT")
    if raw:
        info = json.loads(raw)
        # Hosted environments store the key with escaped newlines
        if "private_key" in info:
            info["private_key"] = info["private_key"].replace("\\n", "\n")
        logger.info("Using FIREBASE_SERVICE_ACCOUNT from environment")
        return info
    path = os.getenv("FIREBASE_SERVICE_ACCOUNT_FILE", "serviceAccountKey.json")
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as fh:
            logger.info("Using service account file %s", path)
            return json.load(fh)
    logger.error("No Firebase service account found")
    return None


def _to_account(record) -> dict:
    claims = record.custom_claims or {}
    created = None
    metadata = getattr(record, "user_metadata", None)
    if metadata is not None and metadata.creation_timestamp:
        created = datetime.fromtimestamp(metadata.creation_timestamp / 1000, tz=timezone.utc)
    return {
        "uid": record.uid,
        "email": record.email,
        "name": record.display_name,
        "phone": record.phone_number,
        "created_at": created,
        "claims": claims,
        "is_admin": bool(claims.get(ADMIN_CLAIM)),
    }


@contextmanager
def _firebase_errors(action: str):
    try:
        yield
    except auth.UserNotFoundError:
        raise NotFoundError("Account not found", details={"action": action})
    except (firebase_exceptions.FirebaseError, ValueError) as e:
        logger.error("Firebase error while trying to %s: %s", action, e)
        raise ExternalServiceError(f"Identity provider failed to {action}", details={"reason": str(e)[:200]})


class FirebaseIdentityProvider:
    def __init__(self, app=None):
        self.app = app

    def verify(self, token: str) -> dict:
        """Verify an ID token and return its decoded claims (uid, email, custom claims)."""
        if not token:
            raise AuthenticationError("Missing token")
        try:
            decoded = auth.verify_id_token(token, app=self.app)
        except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as e:
            logger.warning("Invalid/expired token: %s", e)
            raise AuthenticationError("Invalid or expired token")
        except firebase_exceptions.FirebaseError as e:
            logger.error("Token verification failed: %s", e)
            raise ExternalServiceError("Could not verify token")
        return decoded

    def get_account(self, uid: str) -> dict:
        with _firebase_errors("get account"):
            return _to_account(auth.get_user(uid, app=self.app))

    def get_account_by_email(self, email: str) -> dict:
        with _firebase_errors("find account by email"):
            return _to_account(auth.get_user_by_email(email, app=self.app))

    def get_claims(self, uid: str) -> dict:
        return self.get_account(uid)["claims"]

    def is_admin(self, uid: str) -> bool:
        return bool(self.get_claims(uid).get(ADMIN_CLAIM))

    def grant_admin(self, uid: str):
        claims = dict(self.get_claims(uid))
        claims[ADMIN_CLAIM] = True
        with _firebase_errors("set admin claim"):
            auth.set_custom_user_claims(uid, claims, app=self.app)
        logger.info("Admin claim set for %s", uid)

    def revoke_admin(self, uid: str):
        claims = dict(self.get_claims(uid))
        claims.pop(ADMIN_CLAIM, None)
        with _firebase_errors("remove admin claim"):
            auth.set_custom_user_claims(uid, claims or None, app=self.app)
        logger.info("Admin claim removed for %s", uid)

    def list_accounts(self) -> list:
        accounts = []
        with _firebase_errors("list accounts"):
            page = auth.list_users(max_results=PAGE_SIZE, app=self.app)
            while page is not None:
                accounts.extend(_to_account(u) for u in page.users)
                page = page.get_next_page()
        return accounts

    def list_admins(self) -> list:
        return [a for a in self.list_accounts() if a["is_admin"]]

    def delete_account(self, uid: str):
        with _firebase_errors("delete account"):
            auth.delete_user(uid, app=self.app)
        logger.info("Deleted Firebase account %s", uid)


_provider = None


def get_identity_provider() -> FirebaseIdentityProvider:
    """FastAPI dependency; initializes the Firebase app on first use."""
    global _provider
    if _provider is None:
        try:
            app = firebase_admin.get_app()
        except ValueError:
            info = load_service_account()
            if info is None:
                raise ExternalServiceError("Identity provider is not configured")
            app = firebase_admin.initialize_app(credentials.Certificate(info))
            logger.info("Firebase Admin initialized")
        _provider = FirebaseIdentityProvider(app)
    return _provider
