"""
"Join the team" applications.

Approving an application promotes the applicant's Firebase account to admin.
The application is only deleted once the admin claim has been read back from
the identity provider.
"""
import logging

from pymongo import ReturnDocument

from database import COLLECTION_JOIN_REQUESTS, create_document, get_documents, parse_object_id, storage_errors
from errors import ExternalServiceError, NotFoundError, StorageError
from schemas import JoinTeamApplication, JoinTeamRequest

logger = logging.getLogger(__name__)


class VolunteerIntake:
    def __init__(self, database, identity=None):
        self.db = database
        self.identity = identity

    def apply(self, application: JoinTeamApplication) -> str:
        data = application.model_dump()
        data["email"] = str(application.email).strip().lower()
        request = JoinTeamRequest(**{k: v.strip() if isinstance(v, str) else v for k, v in data.items()})
        request_id = create_document(self.db, COLLECTION_JOIN_REQUESTS, request)
        logger.info("Join request %s from %s", request_id, request.email)
        return request_id

    def list(self) -> list:
        return get_documents(self.db, COLLECTION_JOIN_REQUESTS, sort=[("created_at", -1)])

    def count(self) -> int:
        with storage_errors("count join requests"):
            return self.db[COLLECTION_JOIN_REQUESTS].count_documents({})

    def get(self, request_id: str) -> dict:
        oid = parse_object_id(request_id, "Join request")
        with storage_errors("read join request"):
            request = self.db[COLLECTION_JOIN_REQUESTS].find_one({"_id": oid})
        if request is None:
            raise NotFoundError("Join request not found", details={"id": request_id})
        return request

    def approve(self, request_id: str) -> dict:
        request = self.get(request_id)
        account = self.identity.get_account_by_email(request["email"])
        self.identity.grant_admin(account["uid"])
        if not self.identity.is_admin(account["uid"]):
            raise ExternalServiceError("Admin claim was not applied", details={"uid": account["uid"]})
        logger.info("%s promoted to admin", request["email"])

        try:
            with storage_errors("delete approved join request"):
                self.db[COLLECTION_JOIN_REQUESTS].delete_one({"_id": request["_id"]})
        except StorageError:
            self.identity.revoke_admin(account["uid"])
            logger.warning("Revoked admin claim for %s after failed request delete", request["email"])
            raise
        return account

    def reject(self, request_id: str) -> dict:
        oid = parse_object_id(request_id, "Join request")
        with storage_errors("reject join request"):
            updated = self.db[COLLECTION_JOIN_REQUESTS].find_one_and_update(
                {"_id": oid},
                {"$set": {"status": "rejected"}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            raise NotFoundError("Join request not found", details={"id": request_id})
        logger.info("Join request %s rejected", oid)
        return updated

    def delete(self, request_id: str):
        oid = parse_object_id(request_id, "Join request")
        with storage_errors("delete join request"):
            result = self.db[COLLECTION_JOIN_REQUESTS].delete_one({"_id": oid})
        if not result.deleted_count:
            raise NotFoundError("Join request not found", details={"id": request_id})
