from __future__ import annotations

from unittest.mock import patch

import main
from vaccibot.config import Settings
from vaccibot.domain import DoctolibError
from vaccibot.worker import Booking


def _settings() -> Settings:
    return Settings(
        doctolib_username="u",
        doctolib_password="p",
        centers_file="centers.txt",
        workers_count=2,
    )


def test_main_passes_flags_to_settings_and_returns_0_after_booking() -> None:
    booking = Booking(location="centre-a", appointment_id="appt-1", start_date="s", second_slot="s2")

    with (
        patch("main.load_settings", return_value=_settings()) as load_settings,
        patch("main.load_locations", return_value=["centre-a"]),
        patch("main.run_forever", return_value=booking) as run_forever,
    ):
        assert main.main(["-u", "jeanne@example.com", "-p", "secret", "-f", "centers.txt", "-w", "2"]) == 0

    overrides = load_settings.call_args.kwargs["overrides"]
    assert overrides["DOCTOLIB_USERNAME"] == "jeanne@example.com"
    assert overrides["WORKERS"] == "2"
    assert overrides["SLEEP_SECONDS"] is None
    run_forever.assert_called_once_with(_settings(), ["centre-a"])


def test_main_fails_before_starting_workers_on_login_error() -> None:
    with (
        patch("main.load_settings", return_value=_settings()),
        patch("main.load_locations", return_value=["centre-a"]),
        patch("main.run_forever", side_effect=DoctolibError("Unexpected response status code (401)")),
    ):
        assert main.main([]) == 1


def test_main_rejects_invalid_configuration() -> None:
    with (
        patch("main.load_settings", side_effect=RuntimeError("Missing required setting: DOCTOLIB_USERNAME")),
        patch("main.run_forever") as run_forever,
    ):
        assert main.main([]) == 1

    run_forever.assert_not_called()
