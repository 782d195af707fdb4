from __future__ import annotations

import logging
from typing import Iterable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from spotwatch.domain import Appointment, NetworkError, ProgramConfig, Snapshot, SnapshotKey, SpotInfo
from spotwatch.site_client import SiteClient

logger = logging.getLogger(__name__)

_RETRY_WAIT = wait_exponential(multiplier=2, min=2, max=4)


def find_appointment_for_date(appointments: Iterable[Appointment], date_iso: str) -> Appointment | None:
    # Only the first appointment on a given day is tracked.
    day = date_iso[:10]
    return next((a for a in appointments if a.start_date.startswith(day)), None)


def _time_of_day(start_date: str) -> str:
    _, _, time_part = start_date.partition("T")
    return time_part


async def poll_program(client: SiteClient, program: ProgramConfig) -> Snapshot:
    appointments, dates = await client.fetch_catalog(program.id)
    logger.debug(
        "Catalog for %s: appointments=%d dates=%d", program.name, len(appointments), len(dates)
    )

    current: Snapshot = {}
    for date_iso in dates:
        appt = find_appointment_for_date(appointments, date_iso)
        if appt is None:
            continue

        spots = await client.fetch_spots(appt, date_iso)
        date = date_iso[:10]
        current[SnapshotKey(program.id, date, appt.id)] = SpotInfo(
            program_name=program.name,
            product_name=appt.product_name,
            date=date,
            time=_time_of_day(appt.start_date),
            spots=spots,
        )

    return current


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        exc = retry_state.outcome.exception()
        logger.warning(
            "Poll attempt %s failed (%s: %s)", retry_state.attempt_number, type(exc).__name__, exc
        )


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying poll (attempt %s)", retry_state.attempt_number + 1)
        return
    logger.info("Retrying poll in %.0f s (attempt %s)", sleep_seconds, retry_state.attempt_number + 1)


async def poll_program_with_retry(client: SiteClient, program: ProgramConfig, *, attempts: int = 1) -> Snapshot:
    """Poll one program, retrying network failures up to ``attempts`` times in total.

    Parse failures are never retried: a changed page will not fix itself
    within one cycle.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=_RETRY_WAIT,
        retry=retry_if_exception_type(NetworkError),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    return await retrying(poll_program, client, program)
