"""Fixed tuning values for weather lookups, token refresh and webhook retries."""

# Weather lookups
WEATHER_CACHE_EXPIRY_MINUTES = 30
COORDINATE_PRECISION = 4
TIME_ROUND_MINUTES = 15
RECENT_ACTIVITY_THRESHOLD_HOURS = 1
HISTORICAL_LIMIT_HOURS = 120
DEFAULT_VISIBILITY_METERS = 10000

# Credential refresh
TOKEN_REFRESH_BUFFER_MINUTES = 5

# Transport retry (activity and weather clients)
TRANSPORT_MAX_RETRIES = 3
TRANSPORT_BACKOFF_BASE_SECONDS = 2.0

# Webhook retry session
WEBHOOK_MAX_PROCESSING_SECONDS = 8.0
WEBHOOK_MAX_RETRY_ATTEMPTS = 3
WEBHOOK_RETRY_DELAYS_SECONDS = (1.5, 3.0)

COMPASS_POINTS = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)
