"""Tests for the synthetic log generator."""

from __future__ import annotations

import random

from scripts.generate_logs import generate_logs
from tests.factories import T0


def test_count_and_ordering():
    random.seed(7)

    logs = generate_logs(25, now=T0)

    assert len(logs) == 25
    assert [e.timestamp for e in logs] == sorted(e.timestamp for e in logs)


def test_incident_mode_includes_failures():
    random.seed(11)

    logs = generate_logs(60, incident_mode=True, now=T0)

    assert any(e.level == "CRITICAL" for e in logs)
    assert all(e.session_id and e.user_id for e in logs)
