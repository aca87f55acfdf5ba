"""OpenTelemetry tracing setup for Manga Suggestions.

Besides the FastAPI request spans and SQLAlchemy query spans, the engine
opens its own spans:

- ``suggestions.run``: one per engine run, with the seed, source and
  stored suggestion counts as attributes.
- ``suggestions.source_query``: one per queried source, tagged with
  ``suggestions.source``. Failed sources record the exception here.
"""

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

SERVICE_NAME = "manga-suggestions"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_sqla_instrumentor = SQLAlchemyInstrumentor()


def setup_tracing(app, endpoint: str | None = None) -> TracerProvider:
    """Install a tracer provider and instrument the FastAPI app.

    Spans are exported over OTLP gRPC to ``endpoint`` (default: the
    ``OTLP_ENDPOINT`` env var). An empty endpoint keeps spans in-process
    without an exporter.
    """
    if endpoint is None:
        endpoint = os.environ.get("OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)

    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    if endpoint:
        exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)
    return provider


def instrument_engine(async_engine) -> None:
    """Trace queries issued through an async SQLAlchemy engine."""
    _sqla_instrumentor.instrument(engine=async_engine.sync_engine)
