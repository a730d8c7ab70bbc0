import logging
import re

from database import (
    COLLECTION_EVENTS,
    COLLECTION_REGISTRATIONS,
    create_document,
    get_documents,
    parse_object_id,
    storage_errors,
)
from errors import NotFoundError, ValidationError
from schemas import Event, EventCreate, Registration, RegistrationRequest

logger = logging.getLogger(__name__)

REGISTRATION_EMAIL_PATTERN = re.compile(r"^[^\s@]+@gmail\.com$")


class EventService:
    """Events and their registrations. Registrations live in their own collection."""

    def __init__(self, database):
        self.db = database

    def create(self, event: EventCreate, image_url: str) -> str:
        if not image_url:
            raise ValidationError("Please upload an image", error_code="no_image")
        doc = Event(
            title=event.title.strip(),
            date=event.date.strip(),
            description=event.description,
            image_url=image_url,
            button_text=event.button_text,
        )
        event_id = create_document(self.db, COLLECTION_EVENTS, doc)
        logger.info("Event %s created: %s", event_id, doc.title)
        return event_id

    def list(self) -> list:
        return get_documents(self.db, COLLECTION_EVENTS, sort=[("_id", -1)])

    def get(self, event_id: str) -> dict:
        oid = parse_object_id(event_id, "Event")
        with storage_errors("read event"):
            event = self.db[COLLECTION_EVENTS].find_one({"_id": oid})
        if event is None:
            raise NotFoundError("Event not found", details={"id": event_id})
        return event

    def register(self, request: RegistrationRequest) -> str:
        fields = {
            "event_id": (request.event_id or "").strip(),
            "name": (request.name or "").strip(),
            "contact": (request.contact or "").strip(),
            "email": (request.email or "").strip(),
        }
        missing = [k for k, v in fields.items() if not v]
        if missing:
            raise ValidationError("All fields are required", error_code="missing_field", details={"missing": missing})
        if not REGISTRATION_EMAIL_PATTERN.match(fields["email"]):
            raise ValidationError("Please use a valid Gmail address", error_code="invalid_email")

        event = self.get(fields["event_id"])

        data = Registration(**fields).model_dump()
        data["event_id"] = event["_id"]
        registration_id = create_document(self.db, COLLECTION_REGISTRATIONS, data)
        logger.info("Registration %s for event %s", registration_id, event["_id"])
        return registration_id

    def participants(self, event_id: str) -> list:
        oid = parse_object_id(event_id, "Event")
        return get_documents(self.db, COLLECTION_REGISTRATIONS, {"event_id": oid}, sort=[("registered_at", 1)])

    def delete(self, event_id: str) -> int:
        """Delete an event and its registrations. Returns the number of registrations removed."""
        oid = parse_object_id(event_id, "Event")
        with storage_errors("delete event"):
            deleted = self.db[COLLECTION_EVENTS].find_one_and_delete({"_id": oid})
            if deleted is None:
                raise NotFoundError("Event not found", details={"id": event_id})
            result = self.db[COLLECTION_REGISTRATIONS].delete_many({"event_id": oid})
        logger.info("Event %s deleted with %d registrations", oid, result.deleted_count)
        return result.deleted_count
