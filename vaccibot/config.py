from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

MAX_WORKERS = 16

PFIZER_BIONTECH_VISIT_MOTIVE_NAME = "1re injection vaccin COVID-19 (Pfizer-BioNTech)"


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        try:
            int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise RuntimeError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    doctolib_username: str
    doctolib_password: str
    centers_file: str

    workers_count: int = 4
    # Pause before each center check, per worker
    sleep_seconds: float = 1.0
    request_timeout_seconds: float = 5.0

    visit_motive_name: str = PFIZER_BIONTECH_VISIT_MOTIVE_NAME

    # How many times the startup login is attempted on network errors.
    login_retry_attempts: int = 3

    # Optional: booking notification
    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e


def load_settings(dotenv_path: str | None = None, overrides: Mapping[str, str | None] | None = None) -> Settings:
    """Build settings from the environment (and .env).

    ``overrides`` maps environment variable names to values given on the command
    line; empty values are ignored.
    """
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    def _get(name: str, default: str | None = None) -> str | None:
        if overrides:
            value = overrides.get(name)
            if value not in (None, ""):
                return str(value)
        return os.getenv(name, default)

    def _require(name: str) -> str:
        value = _get(name)
        if not value:
            raise RuntimeError(f"Missing required setting: {name}")
        return value

    workers_count = _parse_int("WORKERS", _get("WORKERS", "4") or "4")
    if not 1 <= workers_count <= MAX_WORKERS:
        raise RuntimeError(f"WORKERS must be >= 1 and <= {MAX_WORKERS}")

    sleep_seconds = _parse_int("SLEEP_SECONDS", _get("SLEEP_SECONDS", "1") or "1")
    if sleep_seconds < 0:
        raise RuntimeError("SLEEP_SECONDS must be >= 0")

    request_timeout_seconds = _parse_int("REQUEST_TIMEOUT_SECONDS", _get("REQUEST_TIMEOUT_SECONDS", "5") or "5")
    if request_timeout_seconds < 1:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be >= 1")

    login_retry_attempts = _parse_int("LOGIN_RETRY_ATTEMPTS", _get("LOGIN_RETRY_ATTEMPTS", "3") or "3")
    if login_retry_attempts < 1:
        raise RuntimeError("LOGIN_RETRY_ATTEMPTS must be >= 1")

    telegram_bot_token = _get("TELEGRAM_BOT_TOKEN") or None
    telegram_chat_ids = _parse_telegram_chat_ids(_get("TELEGRAM_CHAT_ID", "") or "")
    if telegram_bot_token and not telegram_chat_ids:
        raise RuntimeError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return Settings(
        doctolib_username=_require("DOCTOLIB_USERNAME"),
        doctolib_password=_require("DOCTOLIB_PASSWORD"),
        centers_file=_require("CENTERS_FILE"),
        workers_count=workers_count,
        sleep_seconds=float(sleep_seconds),
        request_timeout_seconds=float(request_timeout_seconds),
        visit_motive_name=_get("VISIT_MOTIVE_NAME") or PFIZER_BIONTECH_VISIT_MOTIVE_NAME,
        login_retry_attempts=login_retry_attempts,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
