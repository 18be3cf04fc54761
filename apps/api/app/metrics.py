from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

crm_jobs_total = Counter(
    "crm_jobs_total",
    "Total CRM jobs by status",
    ["job_type", "status"],
)

crm_job_duration_seconds = Histogram(
    "crm_job_duration_seconds",
    "CRM job duration in seconds",
    ["job_type"],
)

crm_lead_stage_transitions_total = Counter(
    "crm_lead_stage_transitions_total",
    "Lead stage transitions by kind",
    ["kind"],
)

crm_import_rows_total = Counter(
    "crm_import_rows_total",
    "Bulk import rows by outcome",
    ["status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(route_path, str) and route_path:
        return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_job(job_type: str, status: str, duration: float) -> None:
    crm_jobs_total.labels(job_type=job_type, status=status).inc()
    crm_job_duration_seconds.labels(job_type=job_type).observe(duration)


def observe_stage_transition(kind: str) -> None:
    crm_lead_stage_transitions_total.labels(kind=kind).inc()


def observe_import_rows(status: str, count: int) -> None:
    if count > 0:
        crm_import_rows_total.labels(status=status).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
