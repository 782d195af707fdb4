"""Two-step scrape protocol against the program scheduling site.

All knowledge of the site's markup (element ids, data attributes, form field
names) lives in this module.
"""

from __future__ import annotations

import json
import logging

import httpx
from bs4 import BeautifulSoup

from spotwatch.domain import (
    INVALID_ID_LABEL,
    NO_DATA_LABEL,
    Appointment,
    DecodeError,
    InvalidIdFormatError,
    MissingFieldError,
    NetworkError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://warrior.uwaterloo.ca"
CATALOG_PATH = "/Program/GetProgramInstances"
FILTER_PATH = "/Program/FilterProgramInstances"

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:138.0)"

_NIL_GUID = "00000000-0000-0000-0000-000000000000"

# The filter handler rejects the form unless every one of these is present.
DEFAULT_APPOINTMENT_FIELDS: dict[str, str] = {
    "RecurrenceInfo": "",
    "AppointmentType": "0",
    "Subject": "",
    "AllDay": "false",
    "ResourceId": "",
    "Status": "0",
    "ProductId": _NIL_GUID,
    "ProgramDescription": "",
    "ProgramInstanceId": _NIL_GUID,
    "NumberRegistered": "0",
    "NumberOnWaitlist": "0",
    "ClassSize": "12",
    "PortalURL": "",
    "InstructorFirstNameLastInitial": "",
    "IsInstructor": "false",
    "InstructorId": _NIL_GUID,
    "IsRecurring": "false",
}


def build_http_client(
    *,
    base_url: str = DEFAULT_BASE_URL,
    timeout_seconds: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    base_url = base_url.rstrip("/")
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
        "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
        "X-Requested-With": "XMLHttpRequest",
        "Origin": base_url,
    }
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout_seconds, transport=transport)


def _input_value(soup: BeautifulSoup, element_id: str) -> str:
    el = soup.select_one(f"input#{element_id}")
    if el is None:
        raise MissingFieldError(f"Missing #{element_id} input")
    value = el.get("value")
    if value is None:
        raise MissingFieldError(f"#{element_id} input has no value")
    return str(value)


def _decode_list(raw: str, element_id: str) -> list:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON in #{element_id}: {e}") from e
    if not isinstance(data, list):
        raise DecodeError(f"Expected a JSON array in #{element_id}, got {type(data).__name__}")
    return data


def parse_catalog(html: str) -> tuple[list[Appointment], list[str]]:
    """Extract the appointment list and the date list embedded in a catalog page."""
    soup = BeautifulSoup(html, "lxml")

    raw_appts = _decode_list(_input_value(soup, "ApptInfo"), "ApptInfo")
    raw_dates = _decode_list(_input_value(soup, "hdnDates"), "hdnDates")

    appointments = []
    for item in raw_appts:
        if not isinstance(item, dict):
            raise DecodeError(f"Malformed appointment entry: {item!r}")
        appointments.append(Appointment.from_json(item))

    return appointments, [str(d) for d in raw_dates]


def parse_spots(html: str, appointment_id: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for container in soup.find_all("div", attrs={"data-instance-appointmentid": appointment_id}):
        tag = container.select_one(".spots-tag")
        if tag is not None:
            return tag.get_text().strip()
    return NO_DATA_LABEL


def date_parts(date_iso: str) -> tuple[str, str, str]:
    """Split the calendar day of an ISO timestamp, dropping zero padding.

    >>> date_parts("2024-03-07T09:00:00")
    ('2024', '3', '7')
    """
    year, month, day = date_iso[:10].split("-")
    return year, month.lstrip("0"), day.lstrip("0")


def program_segment(appointment_id: str) -> str:
    segment, sep, _ = appointment_id.partition("-")
    if not sep or not segment:
        raise InvalidIdFormatError(f"Appointment id {appointment_id!r} has no program segment")
    return segment


def build_filter_form(appointment: Appointment, date_iso: str) -> dict[str, str]:
    prefix = "appointments[0]"
    form = {
        f"{prefix}[ID]": appointment.id,
        f"{prefix}[StartDate]": appointment.start_date,
        f"{prefix}[EndDate]": appointment.end_date,
        f"{prefix}[Location]": appointment.location,
        f"{prefix}[ProductName]": appointment.product_name,
    }
    for name, value in DEFAULT_APPOINTMENT_FIELDS.items():
        form[f"{prefix}[{name}]"] = value

    year, month, day = date_parts(date_iso)
    form["programID"] = program_segment(appointment.id)
    form["year"] = year
    form["month"] = month
    form["day"] = day
    return form


class SiteClient:
    """Issues the catalog GET and the filter POST over a shared httpx client."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def _request(self, method: str, url: str, **kwargs) -> str:
        try:
            r = await self._http.request(method, url, **kwargs)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {url} failed ({type(e).__name__}: {e})") from e
        return r.text

    async def fetch_catalog(self, program_id: str) -> tuple[list[Appointment], list[str]]:
        html = await self._request("GET", CATALOG_PATH, params={"programID": program_id})
        return parse_catalog(html)

    async def fetch_spots(self, appointment: Appointment, date_iso: str) -> str:
        try:
            form = build_filter_form(appointment, date_iso)
        except InvalidIdFormatError as e:
            logger.warning("Skipping spots lookup (%s)", e)
            return INVALID_ID_LABEL

        html = await self._request("POST", FILTER_PATH, data=form)
        return parse_spots(html, appointment.id)
