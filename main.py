import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from bson import ObjectId
from fastapi import Cookie, Depends, FastAPI, File, Form, Header, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from database import db, ensure_indexes, get_db
from errors import PermissionDeniedError, ReGiveError, StorageError, ValidationError
from events import EventService
from identity import get_identity_provider
from lifecycle import DonationLifecycle
from profiles import ProfileService
from schemas import (
    DistributionRequest,
    DonationSubmission,
    EventCreate,
    JoinTeamApplication,
    ProfileUpdate,
    RegistrationRequest,
    TokenBody,
)
from storage import get_image_storage
from volunteers import VolunteerIntake

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
TOKEN_MAX_AGE = 7 * 24 * 60 * 60  # 7 days
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        try:
            ensure_indexes(db)
        except StorageError as e:
            logger.warning("Index creation skipped: %s", e.message)
    yield


app = FastAPI(title="ReGive API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReGiveError)
async def regive_error_handler(request: Request, exc: ReGiveError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict()})


# ===== Helpers =====

def serialize_doc(doc: dict):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
    return doc


def read_uploads(files: Optional[List[UploadFile]], max_bytes: int):
    # Browsers post an empty part when no file was picked.
    # At most max_bytes + 1 bytes are read so oversized files fail the size check.
    return [(f.filename, f.content_type, f.file.read(max_bytes + 1)) for f in (files or []) if f.filename]


def get_lifecycle(database=Depends(get_db)) -> DonationLifecycle:
    return DonationLifecycle(database)


def get_event_service(database=Depends(get_db)) -> EventService:
    return EventService(database)


def get_profile_service(database=Depends(get_db)) -> ProfileService:
    return ProfileService(database)


def get_volunteer_intake(database=Depends(get_db), identity=Depends(get_identity_provider)) -> VolunteerIntake:
    return VolunteerIntake(database, identity)


# ===== Auth =====

def get_current_user(
    token: Optional[str] = Cookie(default=None),
    authorization: Optional[str] = Header(default=None),
    identity=Depends(get_identity_provider),
) -> dict:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1]
    return identity.verify(token or "")


def require_admin(user: dict = Depends(get_current_user), identity=Depends(get_identity_provider)) -> dict:
    # Claims are fetched from the provider, not trusted from the token
    if not identity.is_admin(user["uid"]):
        raise PermissionDeniedError("Access denied. Admins only.")
    return user


@app.get("/")
def read_root():
    return {"name": "ReGive API", "status": "ok"}


@app.get("/_health", response_class=PlainTextResponse)
def health():
    return "OK"


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


@app.post("/set-token")
def set_token(body: TokenBody, response: Response):
    if not body.token:
        raise ValidationError("No token provided")
    response.set_cookie(
        TOKEN_COOKIE,
        body.token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        max_age=TOKEN_MAX_AGE,
    )
    return {"message": "Token saved successfully"}


@app.get("/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"success": True}


# ===== User =====

@app.get("/dashboard")
def dashboard(user: dict = Depends(get_current_user), identity=Depends(get_identity_provider)):
    is_admin = identity.is_admin(user["uid"])
    return {
        "user": {"uid": user["uid"], "email": user.get("email")},
        "is_admin": is_admin,
        "redirect": "/admin/dashboard" if is_admin else None,
    }


@app.get("/events", response_model=List[dict])
def list_events(user: dict = Depends(get_current_user), events: EventService = Depends(get_event_service)):
    return [serialize_doc(e) for e in events.list()]


@app.post("/donations", response_model=dict)
def submit_donation(
    items: List[str] = Form(default=[]),
    other_items: Optional[str] = Form(None),
    donor_name: str = Form(""),
    donor_email: str = Form(""),
    donor_contact: str = Form(""),
    pickup: str = Form(""),
    other_location: Optional[str] = Form(None),
    donation_image: List[UploadFile] = File(default=[]),
    user: dict = Depends(get_current_user),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
    storage=Depends(get_image_storage),
):
    submission = DonationSubmission(
        items=items,
        other_items=other_items,
        donor_name=donor_name,
        donor_email=donor_email,
        donor_contact=donor_contact,
        pickup=pickup,
        other_location=other_location,
    )
    uploads = read_uploads(donation_image, storage.max_bytes)
    lifecycle.check_submission(submission, len(uploads))
    for filename, content_type, data in uploads:
        storage.check(filename, content_type, len(data))
    urls = [storage.store(data, filename, content_type) for filename, content_type, data in uploads]
    donation_id = lifecycle.submit(submission, urls)
    return {"success": True, "id": donation_id}


@app.get("/my-donations", response_model=List[dict])
def my_donations(user: dict = Depends(get_current_user), lifecycle: DonationLifecycle = Depends(get_lifecycle)):
    return [serialize_doc(d) for d in lifecycle.list_for_donor(user.get("email"))]


@app.get("/profile", response_model=dict)
def get_profile(user: dict = Depends(get_current_user), profiles: ProfileService = Depends(get_profile_service)):
    return serialize_doc(profiles.get_or_create(user["uid"], user.get("email")))


@app.post("/profile", response_model=dict)
def update_profile(
    update: ProfileUpdate,
    user: dict = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
):
    return serialize_doc(profiles.update(user["uid"], user.get("email"), update))


@app.post("/join-team")
def join_team(application: JoinTeamApplication, database=Depends(get_db)):
    request_id = VolunteerIntake(database).apply(application)
    return {"success": True, "id": request_id, "message": "Application submitted successfully!"}


@app.post("/user/register-event")
def register_event(
    registration: RegistrationRequest,
    user: dict = Depends(get_current_user),
    events: EventService = Depends(get_event_service),
):
    registration_id = events.register(registration)
    return {"success": True, "id": registration_id, "message": "Registered successfully"}


# ===== Admin: dashboard & donations =====

@app.get("/admin/dashboard")
def admin_dashboard(
    admin: dict = Depends(require_admin),
    identity=Depends(get_identity_provider),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
    intake: VolunteerIntake = Depends(get_volunteer_intake),
):
    return {
        "admin": {"uid": admin["uid"], "email": admin.get("email")},
        "total_users": len(identity.list_accounts()),
        "total_donations": lifecycle.count_pending(),
        "total_volunteers": intake.count(),
    }


@app.get("/admin/donations", response_model=List[dict])
def admin_donations(admin: dict = Depends(require_admin), lifecycle: DonationLifecycle = Depends(get_lifecycle)):
    return [serialize_doc(d) for d in lifecycle.list_pending()]


@app.post("/admin/donations/reconcile")
def reconcile_donations(admin: dict = Depends(require_admin), lifecycle: DonationLifecycle = Depends(get_lifecycle)):
    return {"success": True, "removed": lifecycle.reconcile()}


@app.post("/admin/donations/{donation_id}/collect", response_model=dict)
def collect_donation(
    donation_id: str,
    admin: dict = Depends(require_admin),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
):
    return serialize_doc(lifecycle.collect(donation_id))


@app.delete("/admin/donations/{donation_id}")
def discard_donation(
    donation_id: str,
    admin: dict = Depends(require_admin),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
):
    lifecycle.discard("pending", donation_id, actor=admin.get("email"))
    return {"success": True}


@app.get("/admin/collected-items", response_model=List[dict])
def collected_items(admin: dict = Depends(require_admin), lifecycle: DonationLifecycle = Depends(get_lifecycle)):
    return [serialize_doc(d) for d in lifecycle.list_collected()]


@app.post("/admin/collected-items/{item_id}/distribute", response_model=dict)
def distribute_item(
    item_id: str,
    beneficiary: DistributionRequest,
    admin: dict = Depends(require_admin),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
):
    return serialize_doc(lifecycle.distribute(item_id, beneficiary))


@app.delete("/admin/collected-items/{item_id}")
def discard_collected_item(
    item_id: str,
    admin: dict = Depends(require_admin),
    lifecycle: DonationLifecycle = Depends(get_lifecycle),
):
    lifecycle.discard("collected", item_id, actor=admin.get("email"))
    return {"success": True}


@app.get("/admin/beneficiaries", response_model=List[dict])
def beneficiaries(admin: dict = Depends(require_admin), lifecycle: DonationLifecycle = Depends(get_lifecycle)):
    return [serialize_doc(d) for d in lifecycle.list_distributed()]


# ===== Admin: join team =====

@app.get("/admin/join-team", response_model=List[dict])
def join_requests(admin: dict = Depends(require_admin), intake: VolunteerIntake = Depends(get_volunteer_intake)):
    return [serialize_doc(r) for r in intake.list()]


@app.post("/admin/join-team/{request_id}/approve")
def approve_join_request(
    request_id: str,
    admin: dict = Depends(require_admin),
    intake: VolunteerIntake = Depends(get_volunteer_intake),
):
    account = intake.approve(request_id)
    return {"success": True, "uid": account["uid"], "email": account["email"]}


@app.post("/admin/join-team/{request_id}/reject", response_model=dict)
def reject_join_request(
    request_id: str,
    admin: dict = Depends(require_admin),
    intake: VolunteerIntake = Depends(get_volunteer_intake),
):
    return serialize_doc(intake.reject(request_id))


@app.delete("/admin/join-team/{request_id}")
def delete_join_request(
    request_id: str,
    admin: dict = Depends(require_admin),
    intake: VolunteerIntake = Depends(get_volunteer_intake),
):
    intake.delete(request_id)
    return {"success": True}


# ===== Admin: accounts =====

@app.get("/admin/users", response_model=List[dict])
def list_users(admin: dict = Depends(require_admin), identity=Depends(get_identity_provider)):
    return [{k: v for k, v in a.items() if k != "claims"} for a in identity.list_accounts()]


@app.delete("/admin/users/{uid}")
def delete_user(
    uid: str,
    admin: dict = Depends(require_admin),
    identity=Depends(get_identity_provider),
    profiles: ProfileService = Depends(get_profile_service),
):
    identity.delete_account(uid)
    profiles.remove(uid)
    return {"success": True}


@app.post("/admin/users/{uid}/promote")
def promote_user(uid: str, admin: dict = Depends(require_admin), identity=Depends(get_identity_provider)):
    identity.grant_admin(uid)
    return {"success": True, "uid": uid}


@app.get("/admin/admins", response_model=List[dict])
def list_admins(admin: dict = Depends(require_admin), identity=Depends(get_identity_provider)):
    return [{"uid": a["uid"], "name": a["name"], "email": a["email"]} for a in identity.list_admins()]


# ===== Admin: events =====

@app.get("/admin/events", response_model=List[dict])
def admin_events(admin: dict = Depends(require_admin), events: EventService = Depends(get_event_service)):
    return [serialize_doc(e) for e in events.list()]


@app.post("/admin/events", response_model=dict)
def add_event(
    title: str = Form(""),
    date: str = Form(""),
    description: Optional[str] = Form(None),
    button_text: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    events: EventService = Depends(get_event_service),
    storage=Depends(get_image_storage),
):
    if not title.strip() or not date.strip():
        raise ValidationError("Title and date are required")
    event = EventCreate(title=title, date=date, description=description, button_text=button_text)
    uploads = read_uploads([image] if image is not None else [], storage.max_bytes)
    image_url = ""
    if uploads:
        filename, content_type, data = uploads[0]
        image_url = storage.store(data, filename, content_type)
    event_id = events.create(event, image_url)
    return {"success": True, "id": event_id}


@app.get("/admin/events/{event_id}/participants")
def event_participants(
    event_id: str,
    admin: dict = Depends(require_admin),
    events: EventService = Depends(get_event_service),
):
    return {"success": True, "participants": [serialize_doc(p) for p in events.participants(event_id)]}


@app.delete("/admin/events/{event_id}")
def delete_event(
    event_id: str,
    admin: dict = Depends(require_admin),
    events: EventService = Depends(get_event_service),
):
    removed = events.delete(event_id)
    return {"success": True, "message": "Event deleted successfully", "registrations_removed": removed}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
