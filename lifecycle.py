"""
Donation lifecycle: Pending -> Collected -> Distributed.

A donation keeps the ObjectId it was created with through every stage. Each
move writes the next-stage document under that id with insert-only semantics
and then deletes the source, so a move interrupted between the two writes is
repaired by simply replaying it (or by `reconcile`).
"""
import logging
import re
from typing import Dict, List, Optional

from database import (
    COLLECTION_AUDIT,
    COLLECTION_BENEFICIARIES,
    COLLECTION_COLLECTED,
    COLLECTION_DONATIONS,
    create_document,
    get_documents,
    parse_object_id,
    storage_errors,
)
from errors import NotFoundError, ValidationError
from schemas import (
    AuditEntry,
    BeneficiaryRecord,
    CollectedDonation,
    Donation,
    DistributionRequest,
    DonationSubmission,
)

logger = logging.getLogger(__name__)

DONOR_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@gmail\.com$")
MAX_IMAGES = 5

# Fields carried from one stage to the next
COLLECTED_FIELDS = ("donor_name", "donor_email", "donor_contact", "pickup", "items", "other_items", "images")
DISTRIBUTED_FIELDS = COLLECTED_FIELDS + ("collected_at",)

STAGES = {
    "pending": COLLECTION_DONATIONS,
    "collected": COLLECTION_COLLECTED,
}
STAGE_ORDER = [COLLECTION_DONATIONS, COLLECTION_COLLECTED, COLLECTION_BENEFICIARIES]


class DonationLifecycle:
    def __init__(self, database):
        self.db = database

    # ===== Submit =====
    def check_submission(self, submission: DonationSubmission, image_count: int) -> List[str]:
        """Validate a submission without writing it. Returns the cleaned item list."""
        items = [i.strip() for i in submission.items if i and i.strip()]
        if not items:
            raise ValidationError("At least one item is required", error_code="no_items")
        for field in ("donor_name", "donor_contact", "pickup"):
            if not (getattr(submission, field) or "").strip():
                raise ValidationError(f"{field} is required", error_code="missing_field", details={"field": field})
        email = (submission.donor_email or "").strip()
        if not DONOR_EMAIL_PATTERN.match(email):
            raise ValidationError("Donor email must be a gmail.com address", error_code="invalid_email",
                                  details={"donor_email": email})
        if image_count < 1:
            raise ValidationError("At least one image is required", error_code="no_image")
        if image_count > MAX_IMAGES:
            raise ValidationError(f"At most {MAX_IMAGES} images are allowed", error_code="too_many_images")
        return items

    def submit(self, submission: DonationSubmission, images: List[str]) -> str:
        images = [url for url in images if url]
        items = self.check_submission(submission, len(images))
        donation = Donation(
            items=items,
            other_items=_clean(submission.other_items),
            donor_name=submission.donor_name.strip(),
            donor_email=submission.donor_email.strip(),
            donor_contact=submission.donor_contact.strip(),
            pickup=submission.pickup.strip(),
            other_location=_clean(submission.other_location),
            images=images,
        )
        donation_id = create_document(self.db, COLLECTION_DONATIONS, donation)
        logger.info("Donation %s submitted by %s", donation_id, donation.donor_email)
        return donation_id

    # ===== Transitions =====
    def collect(self, donation_id: str) -> dict:
        oid = parse_object_id(donation_id, "Donation")

        def build(source):
            return CollectedDonation(**{f: source.get(f) for f in COLLECTED_FIELDS}).model_dump()

        record = self._advance(COLLECTION_DONATIONS, COLLECTION_COLLECTED, oid, build, "Donation")
        logger.info("Donation %s moved to collected", oid)
        return record

    def distribute(self, collected_id: str, beneficiary: DistributionRequest) -> dict:
        name = (beneficiary.name or "").strip()
        address = (beneficiary.address or "").strip()
        if not name or not address:
            raise ValidationError("Beneficiary name and address are required", error_code="missing_beneficiary")
        oid = parse_object_id(collected_id, "Collected donation")

        def build(source):
            record = BeneficiaryRecord(
                name=name,
                contact=_clean(beneficiary.contact),
                address=address,
                **{f: source.get(f) for f in DISTRIBUTED_FIELDS},
            )
            return record.model_dump()

        record = self._advance(COLLECTION_COLLECTED, COLLECTION_BENEFICIARIES, oid, build, "Collected donation")
        logger.info("Donation %s distributed to %s", oid, name)
        return record

    def _advance(self, source: str, target: str, oid, build, entity: str) -> dict:
        later = STAGE_ORDER[STAGE_ORDER.index(target) + 1:]
        with storage_errors(f"move {entity.lower()} to {target}"):
            document = self.db[source].find_one({"_id": oid})
            if document is None:
                existing = self.db[target].find_one({"_id": oid})
                if existing is not None:
                    logger.info("%s %s already in %s, nothing to do", entity, oid, target)
                    return existing
                raise NotFoundError(f"{entity} not found", details={"id": str(oid)})

            for collection in later:
                if self.db[collection].find_one({"_id": oid}, {"_id": 1}) is not None:
                    self.db[source].delete_one({"_id": oid})
                    logger.warning("%s %s already reached %s; removed stale copy from %s",
                                   entity, oid, collection, source)
                    raise NotFoundError(f"{entity} not found", details={"id": str(oid)})

            self.db[target].update_one({"_id": oid}, {"$setOnInsert": build(document)}, upsert=True)
            self.db[source].delete_one({"_id": oid})
            return self.db[target].find_one({"_id": oid})

    # ===== Discard =====
    def discard(self, stage: str, record_id: str, actor: Optional[str] = None) -> dict:
        collection = STAGES.get(stage)
        if collection is None:
            raise ValidationError(f"Unknown stage: {stage}", details={"allowed": sorted(STAGES)})
        oid = parse_object_id(record_id, "Donation")
        with storage_errors(f"read {collection}"):
            removed = self.db[collection].find_one({"_id": oid})
        if removed is None:
            raise NotFoundError("Donation not found", details={"id": record_id, "stage": stage})

        # Audit entry is written before the delete
        entry = AuditEntry(
            action="discard",
            collection=collection,
            record_id=str(oid),
            actor=actor,
            snapshot={k: v for k, v in removed.items() if k != "_id"},
        )
        create_document(self.db, COLLECTION_AUDIT, entry)
        with storage_errors(f"discard from {collection}"):
            self.db[collection].delete_one({"_id": oid})
        logger.info("Donation %s discarded from %s by %s", oid, collection, actor or "unknown")
        return removed

    def reconcile(self) -> Dict[str, int]:
        """Delete source copies left behind by interrupted moves."""
        removed = {}
        with storage_errors("reconcile donation stages"):
            for index, source in enumerate(STAGE_ORDER[:-1]):
                ids = set()
                for later in STAGE_ORDER[index + 1:]:
                    ids.update(d["_id"] for d in self.db[later].find({}, {"_id": 1}))
                result = self.db[source].delete_many({"_id": {"$in": list(ids)}}) if ids else None
                removed[source] = result.deleted_count if result else 0
        if any(removed.values()):
            logger.warning("Reconcile removed stale copies: %s", removed)
        return removed

    # ===== Listings =====
    def list_pending(self) -> list:
        return get_documents(self.db, COLLECTION_DONATIONS, sort=[("created_at", -1)])

    def list_for_donor(self, email: str) -> list:
        return get_documents(self.db, COLLECTION_DONATIONS, {"donor_email": email}, sort=[("created_at", -1)])

    def list_collected(self) -> list:
        return get_documents(self.db, COLLECTION_COLLECTED, sort=[("collected_at", -1)])

    def list_distributed(self) -> list:
        return get_documents(self.db, COLLECTION_BENEFICIARIES, sort=[("distributed_at", -1)])

    def count_pending(self) -> int:
        with storage_errors("count donations"):
            return self.db[COLLECTION_DONATIONS].count_documents({})


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
