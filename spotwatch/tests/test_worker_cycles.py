from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import appointment_json, render_catalog_page, render_spots_page
from spotwatch.config import Settings
from spotwatch.domain import ProgramConfig, SnapshotKey, SpotInfo
from spotwatch.reconciler import Reconciler
from spotwatch.site_client import SiteClient, build_http_client
from spotwatch.worker import build_reconciler, run_cycle, run_forever


def _settings(*programs: ProgramConfig) -> Settings:
    return Settings(
        interval_seconds=60,
        ntfy_endpoint="https://ntfy.test/spots",
        programs=programs or (ProgramConfig(id="P1", name="Climbing"),),
        base_url="https://site.test",
    )


class _FakeSite:
    """Serves a one-appointment catalog per program and a mutable spots label."""

    def __init__(self, broken_programs: frozenset[str] = frozenset()):
        self.label = "3 spots"
        self.broken_programs = broken_programs

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/Program/GetProgramInstances":
            program_id = request.url.params["programID"]
            if program_id in self.broken_programs:
                return httpx.Response(500, text="Server Error")
            page = render_catalog_page(
                [appointment_json("42-a", "2024-03-07T09:00:00")],
                ["2024-03-07T00:00:00"],
            )
            return httpx.Response(200, text=page)

        if request.url.path == "/Program/FilterProgramInstances":
            return httpx.Response(200, text=render_spots_page({"42-a": self.label}))

        return httpx.Response(404)


def _site_client(site: _FakeSite) -> SiteClient:
    return SiteClient(build_http_client(base_url="https://site.test", transport=httpx.MockTransport(site)))


@pytest.mark.asyncio
async def test_three_cycles_notify_only_on_change() -> None:
    site = _FakeSite()
    notify = AsyncMock()
    reconciler = Reconciler(notify)
    client = _site_client(site)
    settings = _settings()

    await run_cycle(client, settings, reconciler)
    notify.assert_not_called()
    assert reconciler.get(SnapshotKey("P1", "2024-03-07", "42-a")).spots == "3 spots"

    site.label = "2 spots"
    await run_cycle(client, settings, reconciler)
    assert notify.await_count == 1
    title, body = notify.await_args.args
    assert title == "Spot change: Climbing 101"
    assert "3 spots" in body and "2 spots" in body

    await run_cycle(client, settings, reconciler)
    assert notify.await_count == 1


@pytest.mark.asyncio
async def test_failing_program_does_not_block_siblings() -> None:
    site = _FakeSite(broken_programs=frozenset({"P2"}))
    reconciler = Reconciler(AsyncMock())
    settings = _settings(ProgramConfig(id="P1", name="Climbing"), ProgramConfig(id="P2", name="Swimming"))

    await run_cycle(_site_client(site), settings, reconciler)

    assert len(reconciler) == 1
    assert reconciler.get(SnapshotKey("P1", "2024-03-07", "42-a")) is not None


@pytest.mark.asyncio
async def test_markup_change_degrades_to_empty_snapshot() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html><body>Maintenance</body></html>")

    client = SiteClient(build_http_client(base_url="https://site.test", transport=httpx.MockTransport(handler)))
    reconciler = Reconciler(AsyncMock())

    changes = await run_cycle(client, _settings(), reconciler)

    assert changes == []
    assert len(reconciler) == 0


@pytest.mark.asyncio
async def test_run_forever_stops_after_max_cycles_and_waits_remaining_interval() -> None:
    site = _FakeSite()

    def fake_client(**kwargs):
        return build_http_client(transport=httpx.MockTransport(site), **kwargs)

    with (
        patch("spotwatch.worker.build_http_client", side_effect=fake_client),
        patch("spotwatch.worker.asyncio.sleep", new_callable=AsyncMock) as sleep,
        patch("spotwatch.worker.send_ntfy_message", new_callable=AsyncMock) as send,
    ):
        await run_forever(_settings(), max_cycles=2)

    # one pause between the two cycles, never negative
    assert sleep.await_count == 1
    assert 0 <= sleep.await_args.args[0] <= 60
    send.assert_not_called()


class _GatedSite(_FakeSite):
    """Holds every catalog request until ``expected`` of them are open at once."""

    def __init__(self, expected: int):
        super().__init__()
        self.expected = expected
        self.in_flight = 0
        self.max_in_flight = 0
        self.all_open = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path != "/Program/GetProgramInstances":
            return super().__call__(request)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.in_flight == self.expected:
            self.all_open.set()
        try:
            # Polling one program after another never gets past this wait.
            await asyncio.wait_for(self.all_open.wait(), timeout=2)
        finally:
            self.in_flight -= 1
        return super().__call__(request)


@pytest.mark.asyncio
async def test_programs_are_polled_concurrently() -> None:
    site = _GatedSite(expected=2)
    reconciler = Reconciler(AsyncMock())
    settings = _settings(ProgramConfig(id="P1", name="Climbing"), ProgramConfig(id="P2", name="Swimming"))

    await run_cycle(_site_client(site), settings, reconciler)

    assert site.max_in_flight == 2
    assert reconciler.get(SnapshotKey("P1", "2024-03-07", "42-a")) is not None
    assert reconciler.get(SnapshotKey("P2", "2024-03-07", "42-a")) is not None


@pytest.mark.asyncio
async def test_run_forever_overrunning_cycle_starts_next_without_catch_up() -> None:
    # cycle 1 takes 150 s (interval is 60), cycle 2 takes 10 s
    clock = [0.0, 150.0, 150.0, 160.0, 160.0]

    with (
        patch("spotwatch.worker.monotonic", side_effect=clock),
        patch("spotwatch.worker.run_cycle", new_callable=AsyncMock) as cycle,
        patch("spotwatch.worker.asyncio.sleep", new_callable=AsyncMock) as sleep,
        patch("spotwatch.worker.build_reconciler") as build,
    ):
        await run_forever(_settings(), max_cycles=3)

    assert cycle.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.0, 50.0]
    # notifications share one client for the whole run
    assert isinstance(build.call_args.args[1], httpx.AsyncClient)


@pytest.mark.asyncio
async def test_worker_reconciler_sends_notifications_through_given_client() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    key = SnapshotKey("P1", "2024-03-07", "42-a")

    def info(spots: str) -> SpotInfo:
        return SpotInfo("Climbing", "Climbing 101", "2024-03-07", "09:00:00", spots)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as notify_http:
        reconciler = build_reconciler(_settings(), notify_http)
        await reconciler.merge({key: info("3 spots")})
        await reconciler.merge({key: info("2 spots")})

    assert len(seen) == 1
    assert str(seen[0].url) == "https://ntfy.test/spots"
    assert seen[0].headers["Title"] == "Spot change: Climbing 101"
