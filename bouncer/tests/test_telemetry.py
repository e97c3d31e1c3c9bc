"""Admission metrics: declared series only, labels flattened for /healthz."""

from __future__ import annotations

import pytest

from bouncer import telemetry


def test_counters_accumulate_per_label_set():
    telemetry.increment_counter("admissions_total", outcome="admitted")
    telemetry.increment_counter("admissions_total", outcome="admitted")
    telemetry.increment_counter("admissions_total", outcome="bad_key")
    assert telemetry.counter_value("admissions_total", outcome="admitted") == 2
    assert telemetry.counter_value("admissions_total", outcome="bad_key") == 1
    assert telemetry.counter_value("admissions_total", outcome="partial") == 0


def test_summary_flattens_counters_and_gauges():
    telemetry.increment_counter("role_cache_rebuilds_total", status="ok")
    telemetry.set_gauge("event_queue_depth", 3)
    assert telemetry.summary() == {
        "role_cache_rebuilds_total": {"status=ok": 1},
        "event_queue_depth": {"": 3.0},
    }


def test_undeclared_names_are_rejected():
    with pytest.raises(ValueError):
        telemetry.increment_counter("admission_total", outcome="admitted")
    with pytest.raises(ValueError):
        telemetry.set_gauge("queue_depth", 1)
    with pytest.raises(ValueError):
        telemetry.set_gauge("admissions_total", 1)
