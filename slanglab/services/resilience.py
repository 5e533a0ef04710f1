"""Shared plumbing for calls that leave the process.

Two kinds of outbound dependency exist: the evidence and generator HTTP
integrations, which go through ``call_external`` (timeout, jittered retry on
transient failures, latency telemetry), and the Redis connection used for
source-rule change notifications, which is optional and may be absent.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import Awaitable, Callable

import httpx
from redis.asyncio import Redis

from slanglab.core.config import get_settings
from slanglab.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

_TRANSIENT_HTTP_ERRORS = (httpx.TimeoutException, httpx.NetworkError, TimeoutError)

_redis_client: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None


async def get_redis() -> Redis | None:
    # One client per event loop; tests run each case on a fresh loop.
    global _redis_client, _redis_loop
    loop = asyncio.get_running_loop()
    if _redis_client is not None and _redis_loop is loop:
        return _redis_client
    try:
        _redis_client = Redis.from_url(get_settings().redis_url, encoding="utf-8", decode_responses=True)
    except Exception as exc:  # noqa: BLE001 - notifications degrade to the cache TTL
        logger.warning("redis_unavailable", exc_info=exc)
        _redis_client = None
        return None
    _redis_loop = loop
    return _redis_client


def reset_redis() -> None:
    global _redis_client, _redis_loop
    _redis_client = None
    _redis_loop = None


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        settings = get_settings()
        return cls(
            timeout_ms=settings.ext_call_timeout_ms,
            max_attempts=max(1, settings.ext_retry_max_attempts),
            backoff_ms=settings.ext_retry_backoff_ms,
        )

    def backoff_s(self, attempt: int) -> float:
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"upstream status {response.status_code}")
        self.response = response


async def call_external(
    integration: str,
    request: Callable[[], Awaitable[httpx.Response]],
    *,
    policy: RetryPolicy | None = None,
) -> httpx.Response:
    """Send ``request`` with a per-attempt timeout and bounded retries.

    Timeouts, network errors and 5xx answers are retried; any other response
    is returned as is for the provider to interpret. Every call records one
    latency sample under ``integration``. Transport errors that survive the
    last attempt propagate.
    """
    policy = policy or RetryPolicy.from_settings()
    start = time.monotonic()
    attempt = 1
    while True:
        try:
            response = await asyncio.wait_for(request(), timeout=policy.timeout_ms / 1000.0)
            if response.status_code >= 500 and attempt < policy.max_attempts:
                raise _RetryableStatus(response)
            break
        except (_RetryableStatus, *_TRANSIENT_HTTP_ERRORS) as exc:
            if attempt >= policy.max_attempts:
                record_external_call(
                    integration=integration,
                    latency_ms=(time.monotonic() - start) * 1000.0,
                    success=False,
                )
                raise
            logger.info("external_call_retry integration=%s attempt=%s error=%s", integration, attempt, exc)
            increment_counter("external_retries_total")
            await asyncio.sleep(policy.backoff_s(attempt))
            attempt += 1
        except httpx.HTTPError:
            record_external_call(
                integration=integration,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise
    record_external_call(
        integration=integration,
        latency_ms=(time.monotonic() - start) * 1000.0,
        success=response.status_code < 400,
    )
    return response
