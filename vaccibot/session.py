from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import httpx
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from vaccibot.config import Settings
from vaccibot.doctolib import log_in, start_client
from vaccibot.domain import DoctolibError, LoginResponse

logger = logging.getLogger(__name__)


class TokenCarrier:
    """Latest CSRF token of the session.

    Every Doctolib call rotates the token, and the next call must present it.
    Reads and writes are atomic, but workers sharing the session still race:
    a token stored by one worker may be replaced by another before it is used.
    Doctolib then rejects the call and the worker simply retries next cycle.
    """

    def __init__(self, token: str = "") -> None:
        self._lock = threading.Lock()
        self._token = token

    def get(self) -> str:
        with self._lock:
            return self._token

    def set(self, token: str) -> None:
        if not token:
            raise ValueError("empty CSRF token")
        with self._lock:
            self._token = token


@dataclass
class Session:
    client: httpx.Client
    tokens: TokenCarrier
    user_id: int = 0
    full_name: str = ""

    def close(self) -> None:
        self.client.close()


def _is_transport_error(exc: BaseException) -> bool:
    # Rejected credentials are final; only network failures are worth another attempt.
    return isinstance(exc, DoctolibError) and isinstance(exc.__cause__, httpx.TransportError)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    reason = _short_exc(retry_state)
    if reason:
        logger.warning("Login attempt %s failed (%s)", retry_state.attempt_number, reason)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying login...")
        return
    logger.info("Retrying login in %.0f s (attempt %s)", sleep_seconds, retry_state.attempt_number + 1)


def _log_in_with_retry(client: httpx.Client, settings: Settings) -> LoginResponse:
    decorated = retry(
        stop=stop_after_attempt(settings.login_retry_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception(_is_transport_error),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(log_in)

    return decorated(client, username=settings.doctolib_username, password=settings.doctolib_password)


def open_session(settings: Settings, client: httpx.Client | None = None) -> Session:
    """Log in once; the resulting session is shared by every worker."""
    if client is None:
        client = start_client(timeout_seconds=settings.request_timeout_seconds)

    try:
        login = _log_in_with_retry(client, settings)
    except Exception:
        client.close()
        raise

    logger.info("Logged in as %s (ID %d)", login.full_name, login.id)
    return Session(client=client, tokens=TokenCarrier(login.csrf_token), user_id=login.id, full_name=login.full_name)
