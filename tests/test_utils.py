import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum

import pytest
from pydantic import BaseModel

from autoseo.utils import json_dumps, slugify, to_utc_iso


class Color(Enum):
    RED = "red"


@dataclass
class Payload:
    value: str


class PayloadModel(BaseModel):
    name: str


def test_json_dumps_handles_supported_types():
    encoded = json_dumps(
        {
            "dataclass": Payload(value="ok"),
            "enum": Color.RED,
            "datetime": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "date": date(2026, 1, 2),
            "model": PayloadModel(name="example"),
            "tuple": ("x", "y"),
        }
    )
    decoded = json.loads(encoded)
    assert decoded["dataclass"] == {"value": "ok"}
    assert decoded["enum"] == "red"
    assert decoded["datetime"] == "2026-01-01T00:00:00+00:00"
    assert decoded["date"] == "2026-01-02"
    assert decoded["model"] == {"name": "example"}
    assert decoded["tuple"] == ["x", "y"]


@pytest.mark.parametrize(
    "title,expected",
    [
        ("The Best CRM Tools (2026)", "the-best-crm-tools-2026"),
        ("Café & Crème", "cafe-creme"),
        ("What's the Best CRM?", "whats-the-best-crm"),
        ("Node.js vs. Deno", "node-js-vs-deno"),
        ("!!!", "untitled"),
        ("", "untitled"),
    ],
)
def test_slugify(title, expected):
    assert slugify(title) == expected


def test_to_utc_iso_normalises_offsets():
    assert to_utc_iso("2026-04-01T11:00:00+02:00") == "2026-04-01T09:00:00+00:00"
    assert to_utc_iso("2026-04-01T09:00:00Z") == "2026-04-01T09:00:00+00:00"
    assert to_utc_iso(datetime(2026, 4, 1, 9, 0)) == "2026-04-01T09:00:00+00:00"
    local = datetime(2026, 4, 1, 4, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert to_utc_iso(local) == "2026-04-01T09:00:00+00:00"
    assert to_utc_iso("  ") is None
    assert to_utc_iso(None) is None
