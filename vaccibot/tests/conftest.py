from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from vaccibot.config import PFIZER_BIONTECH_VISIT_MOTIVE_NAME
from vaccibot.session import Session, TokenCarrier


@dataclass
class Call:
    method: str
    path: str
    params: dict[str, str]
    body: Any
    token: str | None
    thread: str


@dataclass
class FakeCenter:
    """Booking data plus what the availability endpoints return for it."""

    profile_id: int
    visit_motives: list[dict[str, Any]]
    agendas: list[dict[str, Any]]
    first_shots: dict[str, Any] = field(default_factory=lambda: {"availabilities": [], "total": 0})
    second_shots: dict[str, Any] = field(default_factory=lambda: {"availabilities": [], "total": 0})


def bookable_center(
    agenda_id: int,
    *,
    first_slot: str = "2021-05-20T10:00:00.000+02:00",
    second_step: str = "2021-06-24T10:00:00.000+02:00",
    second_slot: str = "2021-06-24T10:30:00.000+02:00",
) -> FakeCenter:
    return FakeCenter(
        profile_id=agenda_id * 10,
        visit_motives=[{"id": agenda_id + 1000, "name": PFIZER_BIONTECH_VISIT_MOTIVE_NAME}],
        agendas=[{"id": agenda_id, "practice_id": agenda_id + 500, "visit_motive_ids": [agenda_id + 1000]}],
        first_shots={
            "availabilities": [
                {
                    "date": first_slot[:10],
                    "slots": [{"start_date": first_slot, "steps": [{"start_date": first_slot}, {"start_date": second_step}]}],
                }
            ],
            "total": 1,
        },
        second_shots={
            "availabilities": [{"date": second_slot[:10], "slots": [{"start_date": second_slot}]}],
            "total": 1,
        },
    )


class FakeDoctolib:
    """In-memory Doctolib speaking just enough of the JSON API for the bot.

    Every response carries a new CSRF token; calls are recorded with the token
    they presented.
    """

    def __init__(self) -> None:
        self.centers: dict[str, FakeCenter] = {}
        # slug -> booking body served as is, bypassing `centers`
        self.raw_bookings: dict[str, Any] = {}
        self.patients: list[dict[str, Any]] = [{"id": 7, "first_name": "Jeanne", "last_name": "Martin"}]
        self.calls: list[Call] = []
        self.issued_tokens: list[str] = []
        self.booking_delay = 0.0
        self.confirm_failures = 0
        self.omit_token_for: set[str] = set()
        self._lock = threading.Lock()
        self._appointments = 0

    # region helpers
    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def session(self, token: str = "tok-login") -> Session:
        return Session(client=self.client(), tokens=TokenCarrier(token), user_id=1, full_name="Jeanne Martin")

    def paths(self) -> list[str]:
        return [f"{c.method} {c.path}" for c in self.calls]

    def booking_calls(self) -> list[Call]:
        booking_paths = ("/appointments", "/second_shot_availabilities.json", "/account/master_patients.json")
        return [c for c in self.calls if c.path.startswith(booking_paths)]

    # endregion

    def _respond(self, path: str, status: int, data: Any) -> httpx.Response:
        headers = {}
        with self._lock:
            token = f"tok-{len(self.issued_tokens) + 1}"
            self.issued_tokens.append(token)
        if path not in self.omit_token_for:
            headers["x-csrf-token"] = token
        return httpx.Response(status, json=data, headers=headers)

    def _agenda_key(self, request: httpx.Request) -> FakeCenter | None:
        agenda_ids = request.url.params.get("agenda_ids", "")
        for center in self.centers.values():
            if agenda_ids == "-".join(str(a["id"]) for a in center.agendas):
                return center
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        with self._lock:
            self.calls.append(
                Call(
                    method=request.method,
                    path=path,
                    params=dict(request.url.params),
                    body=body,
                    token=request.headers.get("x-csrf-token"),
                    thread=threading.current_thread().name,
                )
            )

        if path == "/sessions/new":
            return self._respond(path, 200, {})
        if path == "/login.json":
            if body["password"] != "secret":
                return self._respond(path, 401, {"error": "invalid credentials"})
            return self._respond(path, 200, {"id": 1, "full_name": "Jeanne Martin"})

        if path.startswith("/booking/"):
            slug = path[len("/booking/") : -len(".json")]
            if slug in self.raw_bookings:
                return self._respond(path, 200, self.raw_bookings[slug])
            center = self.centers.get(slug)
            if center is None:
                return self._respond(path, 404, {})
            return self._respond(
                path,
                200,
                {
                    "data": {
                        "profile": {"id": center.profile_id},
                        "visit_motives": center.visit_motives,
                        "agendas": center.agendas,
                    }
                },
            )

        if path == "/availabilities.json":
            center = self._agenda_key(request)
            return self._respond(path, 200, center.first_shots if center else {"availabilities": [], "total": 0})
        if path == "/second_shot_availabilities.json":
            center = self._agenda_key(request)
            return self._respond(path, 200, center.second_shots if center else {"availabilities": [], "total": 0})

        if path == "/appointments.json" and request.method == "POST":
            time.sleep(self.booking_delay)
            with self._lock:
                self._appointments += 1
                appointment_id = f"appt-{self._appointments}"
            return self._respond(path, 200, {"id": appointment_id})

        if path == "/account/master_patients.json":
            return self._respond(path, 200, self.patients)

        if path.startswith("/appointments/") and request.method == "PUT":
            time.sleep(self.booking_delay)
            with self._lock:
                failing = self.confirm_failures > 0
                if failing:
                    self.confirm_failures -= 1
            if failing:
                return self._respond(path, 500, {"error": "boom"})
            return self._respond(path, 200, {"id": path.split("/")[-1][: -len(".json")]})

        return self._respond(path, 404, {})


@pytest.fixture
def fake_doctolib() -> FakeDoctolib:
    return FakeDoctolib()


@pytest.fixture
def make_center():
    return bookable_center
