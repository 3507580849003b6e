from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class LoginResponse:
    id: int
    full_name: str
    csrf_token: str


@dataclass(frozen=True)
class VisitMotive:
    id: int
    name: str


@dataclass(frozen=True)
class Agenda:
    id: int
    practice_id: int
    visit_motive_ids: tuple[int, ...] = ()
    booking_disabled: bool = False
    booking_temporary_disabled: bool = False


@dataclass(frozen=True)
class BookingResponse:
    """Raw offering data of a vaccination center (profile, motives, agendas)."""

    profile_id: int
    visit_motives: tuple[VisitMotive, ...]
    agendas: tuple[Agenda, ...]
    csrf_token: str


@dataclass(frozen=True)
class AvailabilitySlot:
    start_date: str
    # start_date of each injection step; steps[1] is the second shot
    steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class Availability:
    date: str
    slots: tuple[AvailabilitySlot, ...] = ()


@dataclass(frozen=True)
class AvailabilitiesResponse:
    availabilities: tuple[Availability, ...]
    total: int
    csrf_token: str

    def first_slot(self) -> AvailabilitySlot | None:
        """First slot in server order, skipping days without slots."""
        for availability in self.availabilities:
            if availability.slots:
                return availability.slots[0]
        return None


@dataclass(frozen=True)
class CreateAppointmentResponse:
    id: str
    csrf_token: str


@dataclass(frozen=True)
class MasterPatientsResponse:
    master_patients: list[dict[str, Any]] = field(default_factory=list)
    csrf_token: str = ""


@dataclass(frozen=True)
class ConfirmAppointmentResponse:
    csrf_token: str


@dataclass(frozen=True)
class VaccinationSettings:
    profile_id: int
    visit_motive_ids: tuple[int, ...]
    agenda_ids: tuple[int, ...]
    practice_ids: tuple[int, ...]


class DoctolibError(RuntimeError):
    """Doctolib call failed: transport error, unexpected status, malformed body or missing token."""


class SettingsError(RuntimeError):
    """Vaccination center cannot be booked: no single matching visit motive or no open agenda.

    Not a network failure: the center is skipped until the next cycle.
    """
