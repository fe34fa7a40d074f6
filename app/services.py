"""Wire components together once per process."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from app import config
from app.activity_processor import ActivityProcessor
from app.credential_vault import CredentialVault
from app.data_sources import build_weather_source
from app.strava_client import StravaClient
from app.token_manager import TokenManager, UserLocks
from app.user_store import UserStore, build_user_store
from app.weather_cache import WeatherCache, build_weather_cache
from app.weather_resolver import WeatherResolver
from app.webhook_retry import WebhookRetryController
from app.webhook_subscription import SubscriptionJob, WebhookSubscriptionService
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="services")


@dataclass
class Services:
    """Everything a request handler needs."""
    users: UserStore
    vault: CredentialVault
    strava: StravaClient
    tokens: TokenManager
    weather_cache: WeatherCache
    weather: WeatherResolver
    processor: ActivityProcessor
    retry: WebhookRetryController
    subscriptions: WebhookSubscriptionService
    subscription_job: SubscriptionJob


def build_services(settings: config.Settings | None = None) -> Services:
    """Build the component graph from settings. Raises ValueError on missing secrets."""
    settings = settings or config.settings
    if not settings.encryption_key:
        raise ValueError("encryption_key must be set")

    vault = CredentialVault(settings.encryption_key)
    users = build_user_store(settings)
    strava = StravaClient(
        vault,
        client_id=settings.strava_client_id,
        client_secret=settings.strava_client_secret,
        api_base_url=settings.strava_api_base_url,
        oauth_base_url=settings.strava_oauth_base_url,
        timeout=settings.http_timeout_seconds,
    )
    tokens = TokenManager(vault, strava)
    weather_cache = build_weather_cache(settings)
    weather = WeatherResolver(build_weather_source(settings), weather_cache)
    processor = ActivityProcessor(users, tokens, strava, weather, locks=UserLocks())
    retry = WebhookRetryController(processor, deadline_seconds=settings.webhook_deadline_seconds)
    subscriptions = WebhookSubscriptionService(
        client_id=settings.strava_client_id,
        client_secret=settings.strava_client_secret,
        verify_token=settings.strava_webhook_verify_token,
        callback_url=settings.webhook_callback_url,
        api_base_url=settings.strava_api_base_url,
        timeout=settings.http_timeout_seconds,
    )
    logger.info("Services initialized")
    return Services(
        users=users,
        vault=vault,
        strava=strava,
        tokens=tokens,
        weather_cache=weather_cache,
        weather=weather,
        processor=processor,
        retry=retry,
        subscriptions=subscriptions,
        subscription_job=SubscriptionJob(subscriptions),
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Return the process-wide Services, building them on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def use_services_for_tests(services: Optional[Services]) -> None:
    """Override (or reset with None) the process-wide Services."""
    global _services
    with _services_lock:
        _services = services
