import logging
from datetime import datetime, timezone

from pymongo import ReturnDocument

from database import COLLECTION_USERS, storage_errors
from schemas import ProfileUpdate, UserProfile

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, database):
        self.db = database

    def get_or_create(self, uid: str, email: str) -> dict:
        now = datetime.now(timezone.utc)
        profile = UserProfile(firebase_uid=uid, email=email).model_dump()
        with storage_errors("load profile"):
            return self.db[COLLECTION_USERS].find_one_and_update(
                {"firebase_uid": uid},
                {"$setOnInsert": {**profile, "created_at": now, "updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )

    def update(self, uid: str, email: str, update: ProfileUpdate) -> dict:
        now = datetime.now(timezone.utc)
        with storage_errors("update profile"):
            profile = self.db[COLLECTION_USERS].find_one_and_update(
                {"firebase_uid": uid},
                {
                    "$set": {"name": update.name, "contact": update.contact, "updated_at": now},
                    "$setOnInsert": {"firebase_uid": uid, "email": email, "created_at": now},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        logger.info("Profile updated for %s", uid)
        return profile

    def remove(self, uid: str) -> bool:
        with storage_errors("delete profile"):
            return self.db[COLLECTION_USERS].delete_one({"firebase_uid": uid}).deleted_count > 0
