from __future__ import annotations

import datetime as dt
import logging
import queue
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable

from vaccibot.config import PFIZER_BIONTECH_VISIT_MOTIVE_NAME
from vaccibot.doctolib import confirm_appointment, create_appointment, get_availabilities, get_master_patients
from vaccibot.domain import AvailabilitySlot, DoctolibError, SettingsError, VaccinationSettings
from vaccibot.resolver import fetch_vaccination_settings
from vaccibot.session import Session

logger = logging.getLogger(__name__)

# e.g. 2021-05-20T10:15:00.000+02:00: exactly 3 millisecond digits and a +HH:MM offset
DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"
_DATETIME_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}[+-]\d{2}:\d{2}")

FIRST_SHOT_LIMIT = 1
SECOND_SHOT_LIMIT = 4


@dataclass(frozen=True)
class Booking:
    location: str
    appointment_id: str
    start_date: str
    second_slot: str


def _parse_datetime(value: str) -> dt.datetime:
    if not _DATETIME_RE.fullmatch(value):
        raise ValueError(f"unexpected datetime format: {value!r}")
    return dt.datetime.strptime(value, DATETIME_FORMAT)


def parse_shot_datetimes(slot: AvailabilitySlot) -> tuple[dt.datetime, dt.datetime]:
    """Return (second shot start, first shot datetime) for a first shot slot.

    Raises ValueError when the slot has no second step or a date is malformed.
    """
    if len(slot.steps) < 2:
        raise ValueError(f"no second shot step in slot {slot.start_date!r}")
    return _parse_datetime(slot.steps[1]), _parse_datetime(slot.start_date)


class Vaccibot:
    """One polling worker.

    Takes vaccination centers from ``jobs`` until it gets ``None`` or sees the
    stop signal. Creating and confirming an appointment happens under ``lock``
    so that at most one worker books at a time.
    """

    def __init__(
        self,
        name: str,
        *,
        session: Session,
        jobs: queue.Queue[str | None],
        stop: threading.Event,
        lock: threading.Lock,
        sleep_seconds: float = 1.0,
        visit_motive_name: str = PFIZER_BIONTECH_VISIT_MOTIVE_NAME,
        on_booked: Callable[[Booking], None] | None = None,
    ) -> None:
        if stop is None:
            raise ValueError("stop signal is required")
        if lock is None:
            raise ValueError("booking lock is required")

        self.name = name
        self._session = session
        self._jobs = jobs
        self._stop = stop
        self._lock = lock
        self._sleep_seconds = sleep_seconds
        self._visit_motive_name = visit_motive_name
        self._on_booked = on_booked

    def run(self) -> None:
        while True:
            location = self._jobs.get()
            if location is None:
                logger.info('Vaccibot "%s": no more vaccination centers to check', self.name)
                return

            logger.info('Vaccibot "%s" is checking %s', self.name, location)
            if self._stop.is_set():
                logger.info('Vaccibot "%s" received stop signal', self.name)
                return

            time.sleep(self._sleep_seconds)

            try:
                if self.check_location(location):
                    return
            except Exception as e:
                logger.error(
                    'Vaccibot "%s" check of %s failed (%s: %s)', self.name, location, type(e).__name__, e, exc_info=True
                )

    def check_location(self, location: str) -> bool:
        """Run one poll cycle for ``location``. Returns True when the worker must stop."""
        try:
            settings = fetch_vaccination_settings(
                self._session, location, visit_motive_name=self._visit_motive_name
            )
        except (DoctolibError, SettingsError) as e:
            logger.warning(
                'Vaccibot "%s" failed to get vaccination settings (%s: %s)', self.name, type(e).__name__, e
            )
            return False

        start_date = dt.date.today() + dt.timedelta(days=1)
        try:
            first_shots = get_availabilities(
                self._session.client,
                start_date=start_date,
                first_slot=None,
                visit_motive_ids=settings.visit_motive_ids,
                agenda_ids=settings.agenda_ids,
                practice_ids=settings.practice_ids,
                limit=FIRST_SHOT_LIMIT,
                csrf_token=self._session.tokens.get(),
            )
        except DoctolibError as e:
            logger.error('Vaccibot "%s" failed to get first shot availabilities (%s)', self.name, e)
            return False
        self._session.tokens.set(first_shots.csrf_token)

        slot = first_shots.first_slot()
        if first_shots.total == 0 or slot is None:
            # No availability for now
            return False

        # Prevent two appointment bookings at the same time
        with self._lock:
            # Another worker may have booked while we were waiting for the lock
            if self._stop.is_set():
                logger.info('Vaccibot "%s" received stop signal', self.name)
                return True

            booking = self._book(location, settings, slot)
            if booking is None:
                return False

            self._stop.set()

        logger.info('Vaccibot "%s" successfully confirmed the appointment, congratulations!', self.name)
        if self._on_booked is not None:
            self._on_booked(booking)
        return True

    def _book(self, location: str, settings: VaccinationSettings, slot: AvailabilitySlot) -> Booking | None:
        # Caller holds the booking lock.
        tokens = self._session.tokens
        client = self._session.client

        try:
            first = create_appointment(
                client,
                start_date=slot.start_date,
                second_slot=None,
                visit_motive_ids=settings.visit_motive_ids,
                agenda_ids=settings.agenda_ids,
                practice_ids=settings.practice_ids,
                profile_id=settings.profile_id,
                csrf_token=tokens.get(),
            )
        except DoctolibError as e:
            logger.error('Vaccibot "%s" failed to create first shot appointment (%s)', self.name, e)
            return None
        tokens.set(first.csrf_token)
        logger.info('Vaccibot "%s" created first shot appointment (ID %s)', self.name, first.id)

        # From here on the first appointment is left unconfirmed on any failure;
        # Doctolib drops it on the next destroy_temporary query.
        try:
            second_shot_start, first_shot = parse_shot_datetimes(slot)
        except ValueError as e:
            logger.error('Vaccibot "%s" failed to parse shot datetimes (%s)', self.name, e)
            return None

        try:
            second_shots = get_availabilities(
                client,
                start_date=second_shot_start.date(),
                first_slot=first_shot,
                visit_motive_ids=settings.visit_motive_ids,
                agenda_ids=settings.agenda_ids,
                practice_ids=settings.practice_ids,
                limit=SECOND_SHOT_LIMIT,
                csrf_token=tokens.get(),
            )
            tokens.set(second_shots.csrf_token)

            second_slot = second_shots.first_slot()
            if second_shots.total == 0 or second_slot is None:
                logger.info(
                    'Vaccibot "%s" second shot no more available for appointment (ID %s)', self.name, first.id
                )
                return None

            second = create_appointment(
                client,
                start_date=slot.start_date,
                second_slot=second_slot.start_date,
                visit_motive_ids=settings.visit_motive_ids,
                agenda_ids=settings.agenda_ids,
                practice_ids=settings.practice_ids,
                profile_id=settings.profile_id,
                csrf_token=tokens.get(),
            )
            tokens.set(second.csrf_token)
            logger.info('Vaccibot "%s" created second shot appointment (ID %s)', self.name, second.id)

            patients = get_master_patients(client, csrf_token=tokens.get())
            tokens.set(patients.csrf_token)
            if not patients.master_patients:
                logger.error('Vaccibot "%s" found no patient on the account', self.name)
                return None

            confirmed = confirm_appointment(
                client,
                appointment_id=first.id,
                start_date=slot.start_date,
                master_patient=patients.master_patients[0],
                csrf_token=tokens.get(),
            )
            tokens.set(confirmed.csrf_token)
        except DoctolibError as e:
            logger.error(
                'Vaccibot "%s" failed to book appointment (ID %s) at %s (%s)', self.name, first.id, location, e
            )
            return None

        return Booking(
            location=location,
            appointment_id=first.id,
            start_date=slot.start_date,
            second_slot=second_slot.start_date,
        )
