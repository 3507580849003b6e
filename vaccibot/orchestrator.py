from __future__ import annotations

import logging
import queue
import threading
from typing import Sequence

from vaccibot.config import PFIZER_BIONTECH_VISIT_MOTIVE_NAME, Settings
from vaccibot.session import Session, open_session
from vaccibot.telegram_notifier import broadcast_telegram
from vaccibot.worker import Booking, Vaccibot

logger = logging.getLogger(__name__)

# How long the feeder blocks on a full queue before looking at the stop signal again.
_PUT_TIMEOUT_SECONDS = 0.5


class Orchestrator:
    """Feeds vaccination centers round-robin to a pool of Vaccibot threads.

    Runs until one worker confirms an appointment, then closes the queue and
    waits for every worker to finish its current cycle.
    """

    def __init__(
        self,
        locations: Sequence[str],
        *,
        session: Session,
        workers_count: int,
        sleep_seconds: float = 1.0,
        visit_motive_name: str = PFIZER_BIONTECH_VISIT_MOTIVE_NAME,
        stop: threading.Event | None = None,
    ) -> None:
        if not locations:
            raise ValueError("at least one location is required")
        if workers_count < 1:
            raise ValueError("workers_count must be >= 1")

        self.locations = list(locations)
        self.stop = stop if stop is not None else threading.Event()
        self.lock = threading.Lock()
        self.jobs: queue.Queue[str | None] = queue.Queue(maxsize=workers_count)
        self.booking: Booking | None = None

        self.workers = [
            Vaccibot(
                f"Worker {i + 1}",
                session=session,
                jobs=self.jobs,
                stop=self.stop,
                lock=self.lock,
                sleep_seconds=sleep_seconds,
                visit_motive_name=visit_motive_name,
                on_booked=self._on_booked,
            )
            for i in range(workers_count)
        ]

    def _on_booked(self, booking: Booking) -> None:
        self.booking = booking

    def run(self) -> Booking | None:
        threads = [threading.Thread(target=w.run, name=w.name, daemon=True) for w in self.workers]
        for t in threads:
            t.start()

        try:
            self._feed()
        finally:
            logger.info("Shutting down...")
            self._close_jobs()
            for t in threads:
                t.join()

        return self.booking

    def _feed(self) -> None:
        i = 0
        while not self.stop.is_set():
            location = self.locations[i]
            try:
                self.jobs.put(location, timeout=_PUT_TIMEOUT_SECONDS)
            except queue.Full:
                continue
            i = (i + 1) % len(self.locations)

        logger.info("Vaccibot orchestrator received stop signal")

    def _close_jobs(self) -> None:
        # Nobody else puts anymore: drop pending centers, then wake every worker.
        while True:
            try:
                self.jobs.get_nowait()
            except queue.Empty:
                break
        for _ in self.workers:
            try:
                self.jobs.put_nowait(None)
            except queue.Full:
                break


def run_forever(settings: Settings, locations: Sequence[str]) -> Booking | None:
    session = open_session(settings)
    try:
        orchestrator = Orchestrator(
            locations,
            session=session,
            workers_count=settings.workers_count,
            sleep_seconds=settings.sleep_seconds,
            visit_motive_name=settings.visit_motive_name,
        )
        booking = orchestrator.run()
    finally:
        session.close()

    if booking is not None:
        broadcast_telegram(
            settings,
            "Rendez-vous de vaccination confirmé.\n"
            f"Centre: {booking.location}\n"
            f"1re injection: {booking.start_date}\n"
            f"2e injection: {booking.second_slot}\n"
            f"ID: {booking.appointment_id}",
        )
    return booking
