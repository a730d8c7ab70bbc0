"""
Database Schemas for ReGive

Each stored Pydantic model corresponds to a MongoDB collection. Collection name
is the lowercased class name.

Examples:
- Donation -> "donation"
- CollectedDonation -> "collecteddonation"
- BeneficiaryRecord -> "beneficiaryrecord"

The *Request/*Submission/*Update models at the bottom are the typed inputs of
each operation, validated at the HTTP boundary.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


def _now():
    return datetime.now(timezone.utc)


# Lifecycle stage 1: pending
class Donation(BaseModel):
    items: List[str] = Field(..., description="Donated item names, in form order")
    other_items: Optional[str] = Field(None, description="Free-text extra items")
    donor_name: str
    donor_email: str
    donor_contact: str
    pickup: str = Field(..., description="Pickup method")
    other_location: Optional[str] = Field(None, description="Pickup location when not a listed one")
    images: List[str] = Field(..., description="Public image URLs")
    created_at: datetime = Field(default_factory=_now)


# Lifecycle stage 2: collected (no other_location)
class CollectedDonation(BaseModel):
    donor_name: str
    donor_email: str
    donor_contact: str
    pickup: str
    items: List[str]
    other_items: Optional[str] = None
    images: List[str]
    collected_at: datetime = Field(default_factory=_now)


# Lifecycle stage 3: distributed to a beneficiary
class BeneficiaryRecord(BaseModel):
    name: str = Field(..., description="Beneficiary name")
    contact: Optional[str] = Field(None, description="Beneficiary contact")
    address: str = Field(..., description="Beneficiary address")
    donor_name: str
    donor_email: str
    donor_contact: str
    pickup: str
    items: List[str]
    other_items: Optional[str] = None
    images: List[str]
    collected_at: Optional[datetime] = None
    distributed_at: datetime = Field(default_factory=_now)


# Events
class Event(BaseModel):
    title: str = Field(..., description="Title of the event")
    date: str = Field(..., description="Date as entered, e.g. 2025-05-20")
    description: Optional[str] = None
    image_url: str = Field(..., description="Public URL to banner image")
    button_text: Optional[str] = Field(None, description="Call-to-action text")


class Registration(BaseModel):
    event_id: str
    name: str
    contact: str
    email: str
    registered_at: datetime = Field(default_factory=_now)


# Volunteers
Year = Literal["1", "2", "3", "4"]
Interest = Literal["collection", "sorting", "distribution", "awareness", "event"]
JoinStatus = Literal["pending", "approved", "rejected"]


class JoinTeamRequest(BaseModel):
    name: str
    email: str
    phone: str
    department: str
    year: Year
    interest: Interest
    message: str
    status: JoinStatus = "pending"


class UserProfile(BaseModel):
    firebase_uid: str = Field(..., description="Identity provider subject id")
    email: str
    name: Optional[str] = None
    contact: Optional[str] = None


class AuditEntry(BaseModel):
    action: str
    collection: str
    record_id: str
    actor: Optional[str] = None
    snapshot: dict = Field(default_factory=dict)


# ===== Operation inputs =====

class DonationSubmission(BaseModel):
    items: List[str] = Field(default_factory=list)
    other_items: Optional[str] = None
    donor_name: str
    donor_email: str
    donor_contact: str
    pickup: str
    other_location: Optional[str] = None


class DistributionRequest(BaseModel):
    name: str = ""
    contact: Optional[str] = None
    address: str = ""


class RegistrationRequest(BaseModel):
    event_id: str = ""
    name: str = ""
    contact: str = ""
    email: str = ""


class JoinTeamApplication(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    year: Year
    interest: Interest
    message: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    contact: Optional[str] = None


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1)
    description: Optional[str] = None
    button_text: Optional[str] = None


class TokenBody(BaseModel):
    token: str = ""
