"""HTTP API for the Strava weather service."""

import hmac
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

import redis
import requests
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .errors import ServiceError
from .services import get_services
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="app/api")

# Optional Redis client for API key checks; fallback to a static key
_redis_client = None
if settings.api_key_redis_url:
    try:
        _redis_client = redis.Redis.from_url(settings.api_key_redis_url)
        logger.info("API key checks will use Redis backend",
                    extra={"redis_url": mask_url(settings.api_key_redis_url)})
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Failed to connect to Redis for API key checks; falling back to static key",
                       extra={"error": str(exc)})


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate X-API-Key header against Redis (if configured) or the static api_key setting.
    """
    # If no key configured anywhere, allow requests (dev/default mode).
    if not settings.api_key and not _redis_client:
        logger.debug("No API key configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if _redis_client:
        logger.debug("Checking API key against Redis")
        try:
            if _redis_client.sismember(settings.api_key_redis_set, x_api_key):
                return
        except redis.RedisError as e:
            logger.warning("Redis API key lookup error; falling back to static key",
                           extra={"error": str(e)})

    if settings.api_key and hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        logger.debug("API key not found in Redis; static key matched.")
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


public_router = APIRouter()
router = APIRouter(dependencies=[Depends(require_api_key)])


class WebhookEvent(BaseModel):
    """Strava push notification payload."""
    object_type: str
    object_id: int
    aspect_type: str
    owner_id: int
    subscription_id: Optional[int] = None
    event_time: Optional[int] = None
    updates: Optional[dict[str, Any]] = None


class WebhookAck(BaseModel):
    """Body returned to Strava for every delivery."""
    message: str
    activity_id: Optional[str] = None
    success: Optional[bool] = None
    skipped: Optional[bool] = None


def _ack(message: str = "Event acknowledged", **fields) -> WebhookAck:
    return WebhookAck(message=message, **fields)


@public_router.get("/health")
def health():
    """Liveness probe."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@public_router.get("/strava/webhook")
def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Answer Strava's subscription handshake by echoing the challenge."""
    logger.info("Webhook verification request received")
    expected = settings.strava_webhook_verify_token
    if mode == "subscribe" and expected and token and hmac.compare_digest(token, expected):
        logger.info("Webhook verification successful")
        return {"hub.challenge": challenge}
    logger.warning("Webhook verification failed")
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "Verification failed"})


@public_router.post("/strava/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request):
    """
    Handle a Strava event. Always answers 200 so Strava never redelivers;
    failures are logged instead.
    """
    try:
        event = WebhookEvent.model_validate(await request.json())
    except (ValidationError, ValueError) as exc:
        logger.warning("Ignoring malformed webhook payload", extra={"error": str(exc)})
        return _ack()

    logger.info(
        "Webhook event received: %s for %s %s", event.aspect_type, event.object_type, event.object_id,
        extra={"owner_id": event.owner_id, "subscription_id": event.subscription_id},
    )
    if event.object_type != "activity" or event.aspect_type != "create":
        return _ack()

    # The retry session blocks on network I/O and fixed delays; keep it off the event loop.
    return await run_in_threadpool(_handle_activity_created, event)


def _handle_activity_created(event: WebhookEvent) -> WebhookAck:
    activity_id = str(event.object_id)
    try:
        services = get_services()
        user = services.users.find_by_athlete_id(str(event.owner_id))
        if user is None or not user.weather_enabled:
            logger.info("Skipping activity for athlete %s", event.owner_id)
            return _ack()

        result = services.retry.process_with_retry(activity_id, user.id)
    except Exception:
        logger.exception("Webhook processing failed", extra={"activity_id": activity_id})
        return _ack("Event acknowledged with error")

    if not result.success and not result.skipped:
        logger.error("Webhook processing for activity %s failed: %s", activity_id, result.error)
    return _ack("Webhook processed", activity_id=activity_id, success=result.success, skipped=result.skipped)


@public_router.get("/strava/webhook/status")
def webhook_status():
    """Report whether webhook verification is configured and where Strava should deliver."""
    configured = bool(settings.strava_webhook_verify_token)
    return {
        "configured": configured,
        "verify_token_set": configured,
        "endpoint": settings.webhook_callback_url,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/activities/process/{activity_id}")
def process_activity(activity_id: str, x_user_id: str = Header(...)):
    """Manually enrich one activity for a user; the status code reflects the failure class."""
    if not activity_id.isdigit():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Activity ID must be numeric")

    logger.info("Manual processing requested for activity %s", activity_id, extra={"user_id": x_user_id})
    result = get_services().processor.process(activity_id, x_user_id)
    if result.success or result.skipped:
        return result.to_dict()

    status_code = result.error_kind.http_status if result.error_kind else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.delete("/users/{user_id}")
def delete_user(user_id: str):
    """Revoke the user's Strava authorization (best effort) and delete the record."""
    services = get_services()
    user = services.users.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    revoked = services.tokens.revoke(user.access_token)
    services.users.delete(user_id)
    logger.info("Deleted user %s", user_id, extra={"token_revoked": revoked})
    return {"deleted": True, "token_revoked": revoked}


@router.post("/admin/webhook/ensure", status_code=status.HTTP_202_ACCEPTED)
def ensure_webhook_subscription():
    """Start the background subscription job."""
    job = get_services().subscription_job
    started = job.schedule()
    return {"scheduled": started, "status": job.status.to_dict()}


@router.get("/admin/webhook/job")
def webhook_job_status():
    return get_services().subscription_job.status.to_dict()


@router.delete("/admin/weather-cache")
def clear_weather_cache():
    get_services().weather_cache.clear()
    logger.info("Weather cache cleared")
    return {"cleared": True}


def _subscription_call(action: str, func, *args):
    try:
        return func(*args)
    except (ServiceError, requests.exceptions.RequestException) as exc:
        logger.error("Webhook subscription %s failed: %s", action, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


@router.get("/admin/webhook/subscription")
def view_webhook_subscription():
    """Return the application's push subscription, or null when none exists."""
    subscription = _subscription_call("lookup", get_services().subscriptions.view_subscription)
    return asdict(subscription) if subscription is not None else None


@router.delete("/admin/webhook/subscription/{subscription_id}")
def delete_webhook_subscription(subscription_id: int):
    _subscription_call("delete", get_services().subscriptions.delete_subscription, subscription_id)
    return {"deleted": True, "subscription_id": subscription_id}


@router.post("/admin/webhook/verify")
def verify_webhook_endpoint():
    """Run the verification handshake against our own callback URL."""
    subscriptions = get_services().subscriptions
    callback_url = subscriptions.callback_url
    verified = subscriptions.verify_endpoint(callback_url)
    return {"verified": verified, "callback_url": callback_url}


class WeatherPreference(BaseModel):
    weather_enabled: bool


@router.patch("/users/{user_id}/preferences")
def update_preferences(user_id: str, body: WeatherPreference):
    """Turn weather enrichment on or off for one user."""
    users = get_services().users
    user = users.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user.weather_enabled = body.weather_enabled
    users.save(user)
    logger.info("Updated preferences for user %s", user_id, extra={"weather_enabled": body.weather_enabled})
    return {"user_id": user_id, "weather_enabled": user.weather_enabled}
