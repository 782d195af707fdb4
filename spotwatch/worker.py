from __future__ import annotations

import asyncio
import logging
from time import monotonic

import httpx

from spotwatch.config import Settings
from spotwatch.domain import ProgramConfig, Snapshot, SpotChange
from spotwatch.ntfy_notifier import send_ntfy_message
from spotwatch.poller import poll_program_with_retry
from spotwatch.reconciler import Reconciler
from spotwatch.site_client import SiteClient, build_http_client

logger = logging.getLogger(__name__)


async def _poll_program_safely(client: SiteClient, settings: Settings, program: ProgramConfig) -> Snapshot:
    try:
        return await poll_program_with_retry(client, program, attempts=settings.poll_retry_attempts)
    except Exception as e:
        # One broken program must not take the cycle down with it.
        logger.error("Error checking program %s (%s: %s)", program.name, type(e).__name__, e)
        return {}


async def run_cycle(client: SiteClient, settings: Settings, reconciler: Reconciler) -> list[SpotChange]:
    logger.info("Checking for spot changes...")

    snapshots = await asyncio.gather(
        *(_poll_program_safely(client, settings, program) for program in settings.programs)
    )

    changes: list[SpotChange] = []
    for snapshot in snapshots:
        changes.extend(await reconciler.merge(snapshot))

    logger.info(
        "Cycle done: observed=%d tracked=%d changed=%d",
        sum(len(s) for s in snapshots),
        len(reconciler),
        len(changes),
    )
    return changes


def build_reconciler(settings: Settings, notify_http: httpx.AsyncClient | None = None) -> Reconciler:
    async def notify(title: str, text: str) -> None:
        await send_ntfy_message(endpoint=settings.ntfy_endpoint, title=title, text=text, client=notify_http)

    return Reconciler(notify)


async def run_forever(settings: Settings, *, max_cycles: int | None = None) -> None:
    """Poll every ``settings.interval_seconds`` until cancelled.

    A cycle that overruns the interval is followed by the next one right
    away; missed ticks are not queued.
    """
    logger.info("Worker started. Interval=%ss programs=%d", settings.interval_seconds, len(settings.programs))

    cycles = 0

    # The site client carries AJAX form headers, so ntfy gets its own client.
    async with (
        build_http_client(base_url=settings.base_url, timeout_seconds=settings.request_timeout_seconds) as http,
        httpx.AsyncClient(timeout=settings.request_timeout_seconds) as notify_http,
    ):
        client = SiteClient(http)
        reconciler = build_reconciler(settings, notify_http)
        while True:
            started = monotonic()
            try:
                await run_cycle(client, settings, reconciler)
            except Exception as e:
                logger.error("Cycle failed (%s: %s)", type(e).__name__, e)

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                return

            elapsed = monotonic() - started
            await asyncio.sleep(max(0.0, settings.interval_seconds - elapsed))


def run_check_once(settings: Settings) -> None:
    asyncio.run(run_forever(settings, max_cycles=1))


def run_forever_blocking(settings: Settings) -> None:
    asyncio.run(run_forever(settings))
