from __future__ import annotations

import logging

from vaccibot.doctolib import get_booking
from vaccibot.domain import BookingResponse, SettingsError, VaccinationSettings
from vaccibot.session import Session

logger = logging.getLogger(__name__)


def resolve_vaccination_settings(
    booking: BookingResponse,
    *,
    location: str,
    visit_motive_name: str,
) -> VaccinationSettings:
    """Pick the ids needed to query and book ``visit_motive_name`` at a center.

    Exactly one visit motive must carry that name. Agendas offering it are kept
    unless booking is disabled on them; practices are deduplicated in order.
    """
    visit_motive_ids = [m.id for m in booking.visit_motives if m.name == visit_motive_name]
    if not visit_motive_ids:
        raise SettingsError(f"Cannot find any visit motive ID for vaccination center {location}")
    if len(visit_motive_ids) > 1:
        raise SettingsError(f"Vaccination center {location} has multiple choices for {visit_motive_name!r}")

    visit_motive_id = visit_motive_ids[0]
    agenda_ids: list[int] = []
    practice_ids: list[int] = []
    for agenda in booking.agendas:
        if visit_motive_id not in agenda.visit_motive_ids:
            continue

        if agenda.booking_disabled or agenda.booking_temporary_disabled:
            logger.warning("Agenda %d is disabled for vaccination center %s", agenda.id, location)
            continue

        agenda_ids.append(agenda.id)
        if agenda.practice_id not in practice_ids:
            practice_ids.append(agenda.practice_id)

    if not agenda_ids:
        raise SettingsError(f"Cannot find any agenda/practice IDs for vaccination center {location}")

    return VaccinationSettings(
        profile_id=booking.profile_id,
        visit_motive_ids=(visit_motive_id,),
        agenda_ids=tuple(agenda_ids),
        practice_ids=tuple(practice_ids),
    )


def fetch_vaccination_settings(session: Session, location: str, *, visit_motive_name: str) -> VaccinationSettings:
    booking = get_booking(session.client, location, csrf_token=session.tokens.get())
    session.tokens.set(booking.csrf_token)
    return resolve_vaccination_settings(booking, location=location, visit_motive_name=visit_motive_name)
