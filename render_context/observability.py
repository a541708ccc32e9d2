"""Metrics and tracing hooks for async fragment execution."""

from __future__ import annotations

import contextlib
from typing import Dict, Iterator, Mapping, Optional

from opentelemetry import metrics, trace

from . import logging_manager as log_mgr

logger = log_mgr.get_logger()

_tracer = trace.get_tracer("render_context")
_meter = metrics.get_meter("render_context")
_histograms: Dict[str, metrics.Histogram] = {}


def _get_histogram(name: str) -> metrics.Histogram:
    histogram = _histograms.get(name)
    if histogram is None:
        histogram = _meter.create_histogram(name, unit="ms")
        _histograms[name] = histogram
    return histogram


def record_metric(
    name: str,
    value: float,
    attributes: Optional[Mapping[str, object]] = None,
) -> None:
    """Record a numeric observation through the OpenTelemetry metrics API."""

    attrs = {key: str(val) for key, val in (attributes or {}).items()}
    _get_histogram(name).record(value, attributes=attrs)
    logger.debug(
        "Metric recorded",
        extra={
            "event": "observability.metric_recorded",
            "metric": name,
            "value": value,
            "attributes": attrs,
            "console_suppress": True,
        },
    )


@contextlib.contextmanager
def fragment_span(
    fragment_id: int,
    attributes: Optional[Mapping[str, object]] = None,
) -> Iterator[trace.Span]:
    """Open a tracing span around the synchronous part of a fragment callback."""

    attrs = {key: str(val) for key, val in (attributes or {}).items()}
    attrs["fragment_id"] = str(fragment_id)
    with _tracer.start_as_current_span("render_context.fragment", attributes=attrs) as span:
        yield span


__all__ = ["fragment_span", "record_metric"]
