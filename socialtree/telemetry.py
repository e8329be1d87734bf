"""OpenTelemetry tracing for service actions.

Every user-facing action of :class:`socialtree.service.SocialService` runs
inside ``traced_operation``, which opens a span named
``socialtree.<action>`` and sets the logging context for the same block, so
spans and log lines share a request id.

Exporters:
    - OTLP (gRPC) when ``ENABLE_TRACING`` is set and ``OTLP_ENDPOINT`` is given
    - console in development when tracing is enabled

The tracer provider is private to SocialTree and built lazily on the first
span. ``OTEL_SERVICE_NAME`` overrides the reported service name.

Usage:
    ```python
    from socialtree.telemetry import traced_operation

    with traced_operation("like_post", user_id=uid, post_id=post_id):
        ...
    ```
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from socialtree import __version__
from socialtree.config import settings
from socialtree.logging import get_request_context, logger, operation_context

TRACER_NAME = "socialtree.service"

_provider: TracerProvider | None = None


def _build_provider() -> TracerProvider:
    service_name = os.getenv("OTEL_SERVICE_NAME", "socialtree")
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": service_name,
                "service.version": __version__,
                "deployment.environment": settings.environment.value,
            }
        )
    )

    if settings.enable_tracing and settings.otlp_endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        except Exception as e:
            logger.error(f"❌ Cannot export spans to {settings.otlp_endpoint}: {e}")
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"Exporting spans to {settings.otlp_endpoint}")

    if settings.enable_tracing and settings.is_development:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    logger.debug(f"Tracer provider ready for {service_name}")
    return provider


def initialize_telemetry() -> None:
    """Build the tracer provider if it does not exist yet.

    Raises:
        ValueError: If the OTLP exporter cannot be created
    """
    global _provider
    if _provider is None:
        _provider = _build_provider()


def get_tracer(name: str = TRACER_NAME) -> Tracer:
    initialize_telemetry()
    assert _provider is not None
    return _provider.get_tracer(name, __version__)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Copy attributes onto a span.

    None values are skipped; lists, tuples and dicts are stored as strings.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, dict)):
            value = str(value)
        span.set_attribute(key, value)


@contextmanager
def traced_operation(
    operation: str,
    user_id: str | None = None,
    **attributes: Any,
) -> Iterator[Span]:
    """Run a block as one traced, logged action.

    Exceptions are recorded on the span, which is marked as failed, and
    re-raised unchanged.

    Args:
        operation: Action name, also used as the logging ``operation``
        user_id: Acting user, if any
        **attributes: Extra span attributes (post_id, group_id, ...)

    Yields:
        The active span
    """
    with operation_context(operation, user_id=user_id):
        with get_tracer().start_as_current_span(
            f"socialtree.{operation}",
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            add_span_attributes(span, {**get_request_context(), **attributes})
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise


def shutdown_telemetry() -> None:
    """Flush pending spans and drop the provider."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.debug("Tracer provider shut down")


__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "traced_operation",
]
