"""FastAPI app factory shared by the checkout, webhook and recovery services.

Every service process gets the same bootstrap: JSON logging, redacted startup
config, optional OpenTelemetry export, request metrics and the `/health` and
`/metrics` endpoints.
"""

from time import perf_counter

from fastapi import FastAPI, Header, HTTPException, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ikhaya.common.config import settings
from ikhaya.common.logging import configure_logging, log_startup_config
from ikhaya.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response


def setup_tracing(service_name: str) -> None:
    """Register an OTLP-exporting tracer provider unless tracing is switched off."""

    if not settings.otel_enabled:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def _install_metrics_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()


def create_app(title: str, startup_keys: list[str]) -> FastAPI:
    configure_logging()
    setup_tracing(settings.service_name)
    log_startup_config(settings.service_name, ["SERVICE_NAME", "POSTGRES_DSN", *startup_keys])

    app = FastAPI(title=title)
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
    _install_metrics_middleware(app)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health check endpoint."""

        return {"ok": True}

    return app


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject admin requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")
