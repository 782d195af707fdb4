from __future__ import annotations

import html
import json
from typing import Any

import pytest


def _hidden_input(element_id: str, payload: Any) -> str:
    value = html.escape(json.dumps(payload), quote=True)
    return f'<input type="hidden" id="{element_id}" value="{value}" />'


def render_catalog_page(appointments: list[dict[str, Any]], dates: list[str]) -> str:
    return (
        "<html><body><div id='calendar'>"
        f"{_hidden_input('ApptInfo', appointments)}"
        f"{_hidden_input('hdnDates', dates)}"
        "</div></body></html>"
    )


def render_spots_page(labels: dict[str, str]) -> str:
    cards = "".join(
        f'<div class="card" data-instance-appointmentid="{appt_id}">'
        f'<h3>Class</h3><span class="spots-tag">\n  {label}\n</span></div>'
        for appt_id, label in labels.items()
    )
    return f"<div class='results'>{cards}</div>"


def appointment_json(appt_id: str, start: str, *, product: str = "Climbing 101") -> dict[str, Any]:
    return {
        "ID": appt_id,
        "StartDate": start,
        "EndDate": start[:11] + "10:00:00",
        "Location": "Main Gym",
        "ProductName": product,
        "ClassSize": 12,
    }


@pytest.fixture
def catalog_page():
    return render_catalog_page


@pytest.fixture
def spots_page():
    return render_spots_page


@pytest.fixture
def appointment():
    return appointment_json
