"""Observation sources: where the scheduler gets market snapshots from."""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import requests

from models.errors import ObservationError
from models.observation import IndicatorReading, Observation
from utils.http_client import APIError, HTTPClient
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("tokenwatch.observations")


@runtime_checkable
class ObservationSource(Protocol):
    def fetch_snapshot(self, subject, indicator_ids=()) -> Observation: ...


class SimulatedSource:
    """Deterministic pseudo-market for dry runs and demos.

    Values are derived from a hash of (seed, subject, minute bucket), so the
    same subject read twice within a minute gives the same snapshot.
    """

    def __init__(self, seed="tokenwatch", clock=None, base_price=1.0):
        self.seed = str(seed)
        self.clock = clock
        self.base_price = base_price

    def _unit(self, *parts):
        raw = "|".join(str(p) for p in (self.seed,) + parts)
        digest = hashlib.sha256(raw.encode()).digest()
        return int.from_bytes(digest[:8], "big") / float(1 << 64)

    def fetch_snapshot(self, subject, indicator_ids=()):
        now = self.clock.now() if self.clock else datetime.now(timezone.utc)
        bucket = now.strftime("%Y%m%d%H%M")
        key = str(subject)

        price = self.base_price * (0.9 + 0.2 * self._unit(key, bucket, "price"))
        volume = round(500 * self._unit(key, bucket, "volume") ** 3, 2)
        trades = int(40 * self._unit(key, bucket, "trades") ** 2)
        holder_6h = int(20 * self._unit(key, bucket, "h6")) - 10
        holder_30m = int(12 * self._unit(key, bucket, "h30")) - 2

        indicators = {}
        for ind_id in indicator_ids:
            u = self._unit(key, bucket, "ind", ind_id)
            indicators[ind_id] = IndicatorReading(triggered=u > 0.6, value=f"{u:.3f}")

        return Observation(
            timestamp=now,
            price=round(price, 8),
            volume=volume,
            trades=trades,
            holder_delta_6h=holder_6h,
            holder_delta_30m=holder_30m,
            indicators=indicators,
        )


class HttpSource:
    """Reads snapshots from a market-data service over HTTP.

    Expects ``GET {base_url}/snapshot?asset=..&timeframe=..&indicators=a,b``
    to return an Observation-shaped JSON object.
    """

    def __init__(self, base_url, rate_limit=120, timeout=10, max_retries=2):
        self.client = HTTPClient(
            base_url=base_url,
            rate_limiter=RateLimiter(rate_limit),
            timeout=timeout,
            max_retries=max_retries,
        )

    def fetch_snapshot(self, subject, indicator_ids=()):
        params = {"asset": subject.asset, "timeframe": subject.timeframe}
        if indicator_ids:
            params["indicators"] = ",".join(indicator_ids)
        try:
            data = self.client.get("/snapshot", params=params)
        except (APIError, requests.RequestException) as e:
            raise ObservationError(f"Snapshot fetch failed for {subject}: {e}", subject=subject) from e

        if not isinstance(data, dict):
            raise ObservationError(f"Unexpected snapshot body for {subject}", subject=subject)
        try:
            return Observation.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ObservationError(f"Bad snapshot for {subject}: {e}", subject=subject) from e

    def close(self):
        self.client.close()


def build_source(config, clock=None):
    """Pick an observation source from the ``source`` config section."""
    src_cfg = (config or {}).get("source", {})
    kind = src_cfg.get("type", "simulated")
    if kind == "http":
        base_url = src_cfg.get("base_url")
        if not base_url:
            raise ValueError("source.base_url is required for the http source")
        logger.info(f"Using HTTP observation source at {base_url}")
        return HttpSource(
            base_url,
            rate_limit=src_cfg.get("rate_limit", 120),
            timeout=src_cfg.get("timeout", 10),
            max_retries=src_cfg.get("max_retries", 2),
        )
    if kind == "simulated":
        return SimulatedSource(seed=src_cfg.get("seed", "tokenwatch"), clock=clock)
    raise ValueError(f"Unknown observation source type: {kind}")
