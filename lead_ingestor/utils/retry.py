"""Async retry helper for outbound HTTP calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import cast

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from .config import RetrySettings

logger = logging.getLogger(__name__)


class RetryableStatusError(Exception):
    """Signals a response whose status code is worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Retryable HTTP status {response.status_code}")
        self.response = response


_RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.TransportError,
    RetryableStatusError,
)


def parse_retry_after(value: str | None) -> float | None:
    """Return the delay in seconds announced by a ``Retry-After`` header."""

    if value is None or not value.strip():
        return None
    trimmed = value.strip()
    if trimmed.isdigit():
        return float(trimmed)
    try:
        parsed = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max((parsed - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _wait_strategy(settings: RetrySettings) -> Callable[[RetryCallState], float]:
    def _wait(retry_state: RetryCallState) -> float:
        delay = settings.backoff_factor * (2 ** (max(retry_state.attempt_number, 1) - 1))
        delay = min(delay, settings.max_backoff)

        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            exception = outcome.exception()
            if isinstance(exception, RetryableStatusError):
                announced = parse_retry_after(exception.response.headers.get("retry-after"))
                if announced is not None:
                    delay = max(delay, min(announced, settings.max_backoff))
        return delay

    return _wait


def _last_response(retry_state: RetryCallState) -> httpx.Response:
    outcome = retry_state.outcome
    if outcome is None:
        raise RuntimeError("Retry attempt completed without outcome")
    exception = outcome.exception() if outcome.failed else None
    if isinstance(exception, RetryableStatusError):
        return exception.response
    if exception is not None:
        raise exception
    return cast(httpx.Response, outcome.result())


async def execute_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    retry: RetrySettings,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> httpx.Response:
    """
    Send a request, retrying transport errors and retryable status codes.

    After the last attempt the final response is returned even when its status
    is retryable; transport errors are re-raised.
    """
    if retry.max_attempts <= 1:
        return await send()

    sleep_logger = log or logger
    if isinstance(sleep_logger, logging.LoggerAdapter):
        sleep_logger = cast(logging.Logger, sleep_logger.logger)

    retryable_statuses = set(retry.status_forcelist)
    response: httpx.Response | None = None
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retry.max_attempts),
        wait=_wait_strategy(retry),
        retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
        before_sleep=before_sleep_log(sleep_logger, logging.WARNING),
        reraise=False,
        retry_error_callback=_last_response,
    ):
        with attempt:
            response = await send()
            if response.status_code in retryable_statuses:
                raise RetryableStatusError(response)

    if response is None:
        raise RuntimeError("Retry loop exited without producing a response")
    return response
