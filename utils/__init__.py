"""Utility modules for TokenWatch."""
from utils.logger import setup_logging
from utils.rate_limiter import RateLimiter
from utils.cache import TTLCache
from utils.http_client import HTTPClient, APIError
from utils.log_throttle import LogThrottle
from utils.clock import SystemClock, FakeClock, utcnow, to_iso, from_iso
