from __future__ import annotations

import datetime as dt
from typing import Any, Iterable

import httpx

from vaccibot.domain import (
    Agenda,
    AvailabilitiesResponse,
    Availability,
    AvailabilitySlot,
    BookingResponse,
    ConfirmAppointmentResponse,
    CreateAppointmentResponse,
    DoctolibError,
    LoginResponse,
    MasterPatientsResponse,
    VisitMotive,
)

ROOT_URL = "https://doctolib.fr"

CSRF_HEADER = "x-csrf-token"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/90.0.4430.212 Safari/537.36"
)

_HTML_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
    "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.9"
)


def format_ids(ids: Iterable[int]) -> str:
    # Doctolib expects "1-2-3" in query strings and payloads
    return "-".join(str(i) for i in ids)


def format_datetime(value: dt.datetime) -> str:
    # e.g. 2021-05-20T10:15:00.000+02:00
    return value.isoformat(timespec="milliseconds")


def build_booking_url(location: str) -> str:
    return f"{ROOT_URL}/booking/{location}.json"


def build_availabilities_url(*, second_shot: bool) -> str:
    if second_shot:
        return f"{ROOT_URL}/second_shot_availabilities.json"
    return f"{ROOT_URL}/availabilities.json"


def build_appointment_url(appointment_id: str | None = None) -> str:
    if appointment_id is None:
        return f"{ROOT_URL}/appointments.json"
    return f"{ROOT_URL}/appointments/{appointment_id}.json"


def _headers(csrf_token: str | None, *, json_body: bool = True) -> dict[str, str]:
    headers = {"user-agent": USER_AGENT}
    if json_body:
        headers["accept"] = "application/json"
        headers["content-type"] = "application/json; charset=utf-8"
    else:
        headers["accept"] = _HTML_ACCEPT
    if csrf_token:
        headers[CSRF_HEADER] = csrf_token
    return headers


def start_client(*, timeout_seconds: float) -> httpx.Client:
    # The client's cookie jar carries the Doctolib session between calls.
    return httpx.Client(timeout=timeout_seconds, follow_redirects=False)


def _request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    csrf_token: str | None,
    json_body: bool = True,
    **kwargs: Any,
) -> httpx.Response:
    try:
        r = client.request(method, url, headers=_headers(csrf_token, json_body=json_body), **kwargs)
    except httpx.HTTPError as e:
        raise DoctolibError(f"{method} {url} failed ({type(e).__name__}: {e})") from e

    if r.status_code != 200:
        raise DoctolibError(f"Unexpected response status code ({r.status_code}) for {method} {url}")
    return r


def _json(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise DoctolibError(f"Cannot decode response of {r.request.method} {r.request.url}") from e


def _csrf_token(r: httpx.Response) -> str:
    token = r.headers.get(CSRF_HEADER, "")
    if not token:
        raise DoctolibError(f"No CSRF token found in response of {r.request.method} {r.request.url}")
    return token


def _get_initial_csrf_token(client: httpx.Client) -> str:
    r = _request(client, "GET", f"{ROOT_URL}/sessions/new", csrf_token=None, json_body=False)
    return _csrf_token(r)


def log_in(client: httpx.Client, *, username: str, password: str) -> LoginResponse:
    if not username or not password:
        raise ValueError("username and password are required")

    csrf_token = _get_initial_csrf_token(client)

    payload = {
        "remember": True,
        "remember_username": True,
        "username": username,
        "password": password,
        "kind": "patient",
    }
    r = _request(client, "POST", f"{ROOT_URL}/login.json", csrf_token=csrf_token, json=payload)
    data = _json(r)
    try:
        return LoginResponse(id=int(data["id"]), full_name=str(data.get("full_name", "")), csrf_token=_csrf_token(r))
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise DoctolibError(f"Unexpected login response: {data!r}") from e


def get_booking(client: httpx.Client, location: str, *, csrf_token: str) -> BookingResponse:
    if not location:
        raise ValueError("location is required")

    r = _request(client, "GET", build_booking_url(location), csrf_token=csrf_token)
    token = _csrf_token(r)
    data = _json(r)

    try:
        booking = data["data"]
        visit_motives = tuple(
            VisitMotive(id=int(m["id"]), name=str(m.get("name", ""))) for m in booking.get("visit_motives") or []
        )
        agendas = tuple(
            Agenda(
                id=int(a["id"]),
                practice_id=int(a["practice_id"]),
                visit_motive_ids=tuple(int(i) for i in a.get("visit_motive_ids") or []),
                booking_disabled=bool(a.get("booking_disabled", False)),
                booking_temporary_disabled=bool(a.get("booking_temporary_disabled", False)),
            )
            for a in booking.get("agendas") or []
        )
        return BookingResponse(
            profile_id=int(booking["profile"]["id"]),
            visit_motives=visit_motives,
            agendas=agendas,
            csrf_token=token,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise DoctolibError(f"Unexpected booking response for {location}") from e


def _parse_availabilities(data: Any, token: str) -> AvailabilitiesResponse:
    availabilities: list[Availability] = []
    for item in data.get("availabilities") or []:
        slots: list[AvailabilitySlot] = []
        for s in item.get("slots") or []:
            # Plain datetime strings are returned when the center has no second step.
            if isinstance(s, str):
                slots.append(AvailabilitySlot(start_date=s))
                continue
            steps = tuple(str(step.get("start_date", "")) for step in s.get("steps") or [])
            slots.append(AvailabilitySlot(start_date=str(s["start_date"]), steps=steps))
        availabilities.append(Availability(date=str(item.get("date", "")), slots=tuple(slots)))

    return AvailabilitiesResponse(
        availabilities=tuple(availabilities),
        total=int(data.get("total", 0)),
        csrf_token=token,
    )


def get_availabilities(
    client: httpx.Client,
    *,
    start_date: dt.date,
    first_slot: dt.datetime | None,
    visit_motive_ids: Iterable[int],
    agenda_ids: Iterable[int],
    practice_ids: Iterable[int],
    limit: int,
    csrf_token: str,
) -> AvailabilitiesResponse:
    """Query availabilities starting at ``start_date``.

    With ``first_slot`` the second shot endpoint is queried for slots matching an
    already chosen first injection. Without it the server is told to destroy any
    temporary (not yet confirmed) appointment of the session before searching.
    """
    params: dict[str, str | int] = {
        "start_date": start_date.strftime("%Y-%m-%d"),
        "limit": limit,
        "visit_motive_ids": format_ids(visit_motive_ids),
        "agenda_ids": format_ids(agenda_ids),
        "practice_ids": format_ids(practice_ids),
        "insurance_sector": "public",
    }
    if first_slot is not None:
        params["first_slot"] = format_datetime(first_slot)
    else:
        params["destroy_temporary"] = "true"

    url = build_availabilities_url(second_shot=first_slot is not None)
    r = _request(client, "GET", url, csrf_token=csrf_token, params=params)
    token = _csrf_token(r)
    data = _json(r)

    try:
        return _parse_availabilities(data, token)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise DoctolibError(f"Unexpected availabilities response from {url}") from e


def create_appointment(
    client: httpx.Client,
    *,
    start_date: str,
    second_slot: str | None,
    visit_motive_ids: Iterable[int],
    agenda_ids: Iterable[int],
    practice_ids: Iterable[int],
    profile_id: int,
    csrf_token: str,
) -> CreateAppointmentResponse:
    payload: dict[str, Any] = {
        "agenda_ids": format_ids(agenda_ids),
        "practice_ids": list(practice_ids),
        "appointment": {
            "start_date": start_date,
            "visit_motive_ids": format_ids(visit_motive_ids),
            "profile_id": profile_id,
            "source_action": "profile",
        },
    }
    if second_slot:
        payload["second_slot"] = second_slot

    url = build_appointment_url()
    r = _request(client, "POST", url, csrf_token=csrf_token, json=payload)
    data = _json(r)

    appointment_id = data.get("id") if isinstance(data, dict) else None
    if not appointment_id:
        raise DoctolibError(f"No appointment ID in response of {url}: {r.text}")

    return CreateAppointmentResponse(id=str(appointment_id), csrf_token=_csrf_token(r))


def get_master_patients(client: httpx.Client, *, csrf_token: str) -> MasterPatientsResponse:
    r = _request(client, "GET", f"{ROOT_URL}/account/master_patients.json", csrf_token=csrf_token)
    data = _json(r)
    if not isinstance(data, list) or not all(isinstance(p, dict) for p in data):
        raise DoctolibError(f"Unexpected master patients response: {data!r}")

    return MasterPatientsResponse(master_patients=list(data), csrf_token=_csrf_token(r))


def confirm_appointment(
    client: httpx.Client,
    *,
    appointment_id: str,
    start_date: str,
    master_patient: dict[str, Any],
    csrf_token: str,
) -> ConfirmAppointmentResponse:
    """Confirm an appointment created with :func:`create_appointment`.

    The response body is not inspected: a 200 with a fresh token is all we check,
    so a confirmation the server later rejects still looks successful here.
    """
    payload = {
        "new_patient": True,
        "bypass_mandatory_relative_contact_info": False,
        "phone_number": None,
        "email": None,
        "master_patient": {**master_patient, "mismatchInsurance": False, "consented": True},
        "patient": None,
        "appointment": {
            "qualification_answers": {},
            "new_patient": True,
            "start_date": start_date,
            "custom_fields_values": {},
            "referrer_id": None,
        },
    }

    r = _request(client, "PUT", build_appointment_url(appointment_id), csrf_token=csrf_token, json=payload)
    _json(r)
    return ConfirmAppointmentResponse(csrf_token=_csrf_token(r))
