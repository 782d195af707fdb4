from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple

NO_DATA_LABEL = "N/A"
INVALID_ID_LABEL = "Error: Invalid ID format"


@dataclass(frozen=True)
class ProgramConfig:
    id: str
    name: str


@dataclass(frozen=True)
class Appointment:
    """One schedulable slot as listed in the program catalog."""

    id: str
    start_date: str
    end_date: str
    location: str
    product_name: str

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> Appointment:
        try:
            return cls(
                id=str(raw["ID"]),
                start_date=str(raw["StartDate"]),
                end_date=str(raw["EndDate"]),
                location=str(raw["Location"] or ""),
                product_name=str(raw["ProductName"] or ""),
            )
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Malformed appointment entry: {raw!r}") from e


@dataclass(frozen=True)
class SpotInfo:
    program_name: str
    product_name: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM:SS, may be empty
    spots: str


class SnapshotKey(NamedTuple):
    program_id: str
    date: str
    appointment_id: str


Snapshot = dict[SnapshotKey, SpotInfo]


@dataclass(frozen=True)
class SpotChange:
    key: SnapshotKey
    previous: SpotInfo
    current: SpotInfo

    @property
    def title(self) -> str:
        return f"Spot change: {self.current.product_name}"

    @property
    def message(self) -> str:
        c = self.current
        return (
            f"{c.program_name} ({c.product_name}) on {c.date} @ {c.time}: "
            f"{self.previous.spots} → {c.spots}"
        )


class SpotwatchError(RuntimeError):
    """Base class for everything the watcher raises on purpose."""


class ParseError(SpotwatchError):
    """Configuration or JSON payload is malformed."""


class DecodeError(ParseError):
    """JSON embedded in a scraped page could not be decoded."""


class MissingFieldError(SpotwatchError):
    """An expected element is absent from a scraped page.

    Usually means the site changed its markup.
    """


class NetworkError(SpotwatchError):
    pass


class InvalidIdFormatError(SpotwatchError, ValueError):
    """Appointment id has no leading program segment."""


class NotificationDeliveryError(SpotwatchError):
    pass
