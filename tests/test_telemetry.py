from __future__ import annotations

import logging

from politefetch.core.telemetry import _parse_headers, configure_logging, setup_telemetry


def test_parse_headers_skips_malformed_pairs() -> None:
    assert _parse_headers(None) == {}
    assert _parse_headers("authorization=Bearer abc, x-team = crawl ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "crawl",
    }


def test_setup_telemetry_is_noop_when_disabled(make_settings) -> None:
    runtime = setup_telemetry(make_settings(otel_enabled=False), "worker")
    assert runtime.enabled is False
    assert runtime.provider is None
    assert runtime.component == "worker"


def test_log_records_carry_zero_trace_ids_outside_spans() -> None:
    configure_logging()
    record = logging.getLogRecordFactory()("politefetch", logging.INFO, __file__, 1, "hello", None, None)
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16
