from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Final

import httpx

from .logging_utils import log_event
from .settings import settings


_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


@dataclass
class _RetryResult:
    payload: Any | None
    status_code: int | None
    attempt_count: int
    retry_count: int
    retry_total_backoff_ms: int
    last_error_name: str | None
    last_error_status: int | None


def _is_retryable_exception(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return int(exc.response.status_code) in _RETRYABLE_STATUS
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def _extract_status_code(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return int(exc.response.status_code)
    return None


def _compute_backoff_ms(attempt_index: int) -> int:
    attempt = max(1, int(attempt_index))
    base_ms = max(0, int(settings.network_retry_backoff_base_ms))
    max_ms = max(base_ms, int(settings.network_retry_backoff_max_ms))
    bounded = min(max_ms, base_ms * (2 ** (attempt - 1)))
    if bounded > 0:
        # Up to 10% jitter.
        bounded += random.randint(0, max(1, bounded // 10))
    return int(min(max_ms, bounded))


async def request_json_with_bounded_retry(
    client: httpx.AsyncClient,
    *,
    url: str,
    params: dict[str, Any] | None = None,
    max_attempts: int | None = None,
) -> _RetryResult:
    attempts_allowed = max(1, int(max_attempts or settings.network_max_attempts))
    attempt_count = 0
    retry_count = 0
    retry_total_backoff_ms = 0
    last_error_name: str | None = None
    last_error_status: int | None = None

    while attempt_count < attempts_allowed:
        attempt_count += 1
        try:
            response = await client.get(url, params=params)
            status_code = int(response.status_code)
            if status_code >= 400:
                response.raise_for_status()
            if status_code == 204 or not bytes(response.content or b""):
                payload: Any = {}
            else:
                payload = response.json()
            return _RetryResult(
                payload=payload,
                status_code=status_code,
                attempt_count=attempt_count,
                retry_count=retry_count,
                retry_total_backoff_ms=retry_total_backoff_ms,
                last_error_name=None,
                last_error_status=None,
            )
        except (httpx.HTTPError, ValueError) as exc:
            last_error_name = type(exc).__name__
            last_error_status = _extract_status_code(exc)
            if not _is_retryable_exception(exc) or attempt_count >= attempts_allowed:
                break
            backoff_ms = _compute_backoff_ms(retry_count + 1)
            retry_count += 1
            retry_total_backoff_ms += backoff_ms
            await asyncio.sleep(backoff_ms / 1000.0)

    return _RetryResult(
        payload=None,
        status_code=None,
        attempt_count=attempt_count,
        retry_count=retry_count,
        retry_total_backoff_ms=retry_total_backoff_ms,
        last_error_name=last_error_name,
        last_error_status=last_error_status,
    )


def _new_async_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.network_request_timeout_s, connect=min(5.0, settings.network_request_timeout_s)),
        headers={"accept": "application/json", "user-agent": settings.http_user_agent},
        follow_redirects=True,
    )


class _LiveSource:
    source_name = "live_source"

    def __init__(self, *, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url
        self._client = client or _new_async_client()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch(self, params: dict[str, Any]) -> Any | None:
        t0 = time.perf_counter()
        result = await request_json_with_bounded_retry(self._client, url=self.base_url, params=params)
        if result.payload is None:
            log_event(
                "live_source_failed",
                level=logging.WARNING,
                source=self.source_name,
                url=self.base_url,
                attempt_count=result.attempt_count,
                retry_count=result.retry_count,
                error=result.last_error_name,
                status_code=result.last_error_status,
                duration_ms=round((time.perf_counter() - t0) * 1000, 2),
            )
        return result.payload


class ReverseGeocoder(_LiveSource):
    """Nominatim-style reverse geocoding, consumed read-only and best-effort."""

    source_name = "reverse_geocode"

    async def reverse(self, lat: float, lon: float) -> dict[str, Any] | None:
        payload = await self._fetch({"lat": f"{lat:.6f}", "lon": f"{lon:.6f}", "format": "json", "zoom": 10})
        if not isinstance(payload, dict):
            return None
        return payload


class ElevationClient(_LiveSource):
    """Open-Meteo-style elevation lookup returning metres above sea level."""

    source_name = "elevation_service"

    async def elevation_m(self, lat: float, lon: float) -> float | None:
        payload = await self._fetch({"latitude": f"{lat:.5f}", "longitude": f"{lon:.5f}"})
        if not isinstance(payload, dict):
            return None
        raw = payload.get("elevation")
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return None
        value = float(raw)
        # Open-Meteo reports NaN / sentinel values over missing DEM tiles.
        if value != value or value < -500.0 or value > 9000.0:
            return None
        return value
