import logging
from typing import List, Optional
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi.middleware.cors import CORSMiddleware

import config
import store
from errors import CheckinError, InvalidInput, NotFound, PartialFailure, UpstreamUnavailable
from notifier import ResendTransport, dispatch_alert
from status import classify_status, hours_since
from sweep import run_sweep, warning_overview

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("dead_yet")

app = FastAPI(title="Dead Yet Check-in API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    InvalidInput: 400,
    NotFound: 404,
    PartialFailure: 207,
    UpstreamUnavailable: 503,
}


@app.exception_handler(CheckinError)
def handle_checkin_error(request, exc: CheckinError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    content = {"ok": False, "error": exc.kind, "detail": exc.detail}
    if exc.result is not None:
        content["results"] = exc.result
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=status_code, content=content)


# Models
class RegisterUser(BaseModel):
    user_id: str
    username: Optional[str] = None


class CheckinRequest(BaseModel):
    user_id: str
    timestamp: Optional[int] = None


class AddContactRequest(BaseModel):
    user_id: str
    name: str
    email: str


class AlertContact(BaseModel):
    name: str
    email: str


class SendAlertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contacts: List[AlertContact] = []
    user_name: Optional[str] = Field(None, alias="userName")
    last_checkin: Optional[str] = Field(None, alias="lastCheckIn")


def require_api_key(x_api_key: str = Header(None)):
    if x_api_key != config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_transport():
    if not config.RESEND_API_KEY:
        raise UpstreamUnavailable("email transport is not configured (RESEND_API_KEY missing)")
    return ResendTransport(
        api_key=config.RESEND_API_KEY,
        sender=config.ALERT_FROM_ADDRESS,
        timeout=config.EMAIL_TIMEOUT_SECONDS,
    )


# Endpoints
@app.post("/register_user")
def register_user(payload: RegisterUser, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    profile = store.create_profile(payload.user_id, payload.username)
    return {"ok": True, "profile": profile}


@app.post("/checkin")
def checkin(payload: CheckinRequest, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    ts = store.now_ms()

    if payload.timestamp is not None:
        drift_sec = (ts - payload.timestamp) / 1000.0
        logger.info(f"Clock drift for {payload.user_id}: {drift_sec:.2f}s (positive means server ahead)")

    record = store.record_checkin(payload.user_id, store.checkin_date(ts), ts)
    logger.info(f"Checkin recorded for {payload.user_id} at {ts}")
    return {"ok": True, "timestamp": ts, "record": record}


@app.get("/status/{user_id}")
def status(user_id: str):
    now = store.now_ms()
    try:
        profile = store.get_profile(user_id)
    except NotFound:
        profile = {"user_id": user_id, "username": None, "last_checkin": None, "notification_sent": False}

    hours = hours_since(profile["last_checkin"], now)
    return {
        "user_id": user_id,
        "username": profile["username"],
        "last_checkin": profile["last_checkin"],
        "hours_since_last_checkin": round(hours, 1) if hours is not None else None,
        "status": classify_status(profile["last_checkin"], now),
        "notification_sent": profile["notification_sent"],
        "emergency_contacts_count": store.count_contacts(user_id),
    }


@app.get("/history/{user_id}")
def history(user_id: str, limit: int = Query(config.HISTORY_LIMIT, ge=1, le=config.HISTORY_LIMIT)):
    return {"user_id": user_id, "checkins": store.get_recent_checkins(user_id, limit)}


@app.get("/contacts/{user_id}")
def contacts(user_id: str, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    return {"user_id": user_id, "contacts": store.list_contacts(user_id)}


@app.post("/contacts")
def add_contact(payload: AddContactRequest, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    contact = store.add_contact(payload.user_id, payload.name, payload.email)
    return {"ok": True, "contact": contact}


@app.delete("/contacts/{user_id}/{contact_id}")
def remove_contact(user_id: str, contact_id: str, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    store.remove_contact(user_id, contact_id)
    return {"ok": True}


@app.post("/send_alert_email")
def send_alert_email(payload: SendAlertRequest, x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    if not payload.contacts:
        raise InvalidInput("No contacts provided")
    for contact in payload.contacts:
        store.validate_email(contact.email)

    result = dispatch_alert(
        get_transport(),
        [c.model_dump() for c in payload.contacts],
        user_name=payload.user_name,
        last_checkin_display=payload.last_checkin,
    )
    total = len(payload.contacts)
    if result["success"] == 0:
        raise UpstreamUnavailable(f"all {total} alert email(s) failed", result)
    if result["failure"] > 0:
        raise PartialFailure(f"{result['failure']} of {total} alert email(s) failed", result)
    return {"ok": True, "results": result}


@app.post("/check_missed_checkins")
def check_missed_checkins(x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    summary = run_sweep(get_transport())
    return {"ok": True, **summary}


@app.get("/warning_info")
def warning_info(x_api_key: str = Header(None)):
    require_api_key(x_api_key)
    return {"ok": True, **warning_overview()}


# Background job
def scheduled_sweep():
    try:
        run_sweep(get_transport())
    except Exception as e:
        logger.exception("Error in scheduled sweep: %s", e)


scheduler = BackgroundScheduler()


@app.on_event("startup")
def startup_event():
    store.init_db()
    if config.SWEEP_INTERVAL_SECONDS > 0:
        scheduler.add_job(scheduled_sweep, 'interval', seconds=config.SWEEP_INTERVAL_SECONDS,
                          id="missed_checkin_sweep", replace_existing=True)
        logger.info(f"Starting scheduler (sweep every {config.SWEEP_INTERVAL_SECONDS}s)...")
        scheduler.start()
    else:
        logger.info("In-process sweep disabled; waiting for external trigger on /check_missed_checkins")


@app.on_event("shutdown")
def shutdown_event():
    if scheduler.running:
        logger.info("Shutting down scheduler...")
        scheduler.shutdown()
