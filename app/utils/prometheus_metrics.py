"""
Prometheus metrics for stability, availability, and share access patterns.

- FastAPI: request count, latency (Instrumentator)
- Node/instance: app_info
- Stability: exceptions_total, db_errors_total, external_request_errors_total
- HA: ready gauge (1=up, 0=shutting down), in_flight_requests
- Shares: disclosures, burns, password failures, creations, upload sizes
- Rate limiting: API quota decisions, fail-open count, IP throttling hits
- Pushgateway: 선택 시 주기적으로 메트릭 푸시 (PROMETHEUS_PUSHGATEWAY_URL)
"""
import asyncio
import logging
import socket
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, pushadd_to_gateway
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import get_settings

logger = logging.getLogger(__name__)

# --- Stability ---
exceptions_total = Counter(
    "pastely_exceptions_total",
    "Total unhandled exceptions",
    registry=REGISTRY,
)
db_errors_total = Counter(
    "pastely_db_errors_total",
    "Total database session/transaction errors",
    registry=REGISTRY,
)
external_request_errors_total = Counter(
    "pastely_external_request_errors_total",
    "Total external API request failures",
    ["service"],
    registry=REGISTRY,
)

# 외부 서비스 요청 수 (성공/실패 구분)
external_request_total = Counter(
    "pastely_external_request_total",
    "Total external API requests by service and outcome",
    ["service", "status"],  # status: success | failure
    registry=REGISTRY,
)

external_request_duration_seconds = Histogram(
    "pastely_external_request_duration_seconds",
    "External API request duration in seconds",
    ["service", "result"],  # result: success | failure
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# --- HA ---
ready = Gauge(
    "pastely_ready",
    "Application ready (1=up, 0=shutting down)",
    registry=REGISTRY,
)

# 진행 중인 요청 수 (Graceful shutdown용)
in_flight_requests = Gauge(
    "pastely_in_flight_requests",
    "Number of requests currently being processed",
    registry=REGISTRY,
)

# --- API quota (API key hash 기준) ---
api_quota_decisions_total = Counter(
    "pastely_api_quota_decisions_total",
    "API quota decisions",
    ["result", "window"],  # result: allowed | blocked, window: minute | hour
    registry=REGISTRY,
)

api_quota_fail_open_total = Counter(
    "pastely_api_quota_fail_open_total",
    "Quota checks admitted because the counter store failed",
    registry=REGISTRY,
)

api_quota_cleanup_total = Counter(
    "pastely_api_quota_cleanup_total",
    "Opportunistic purges of stale quota counters",
    ["result"],  # success | failure
    registry=REGISTRY,
)

# --- IP rate limiting (slowapi) ---
rate_limit_hits_total = Counter(
    "pastely_rate_limit_hits_total",
    "Total number of rate limit hits (requests blocked)",
    ["endpoint"],
    registry=REGISTRY,
)

# --- Share access ---
share_disclosure_total = Counter(
    "pastely_share_disclosure_total",
    "Share read attempts by action and outcome",
    # action: get | verify | raw | img | embed
    # result: disclosed | gated | not_found | expired | invalid_password | forbidden
    ["action", "result"],
    registry=REGISTRY,
)

share_burn_total = Counter(
    "pastely_share_burn_total",
    "Burn-after-read claims",
    ["result"],  # won | lost
    registry=REGISTRY,
)

share_password_failures_total = Counter(
    "pastely_share_password_failures_total",
    "Wrong passwords submitted for gated shares",
    registry=REGISTRY,
)

share_disclosure_duration_seconds = Histogram(
    "pastely_share_disclosure_duration_seconds",
    "Share disclosure latency in seconds",
    ["action"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=REGISTRY,
)

share_created_total = Counter(
    "pastely_share_created_total",
    "Shares created",
    ["content_type", "protected", "burn_after_read"],
    registry=REGISTRY,
)

share_deleted_total = Counter(
    "pastely_share_deleted_total",
    "Shares deleted",
    ["reason"],  # owner | burn | expired
    registry=REGISTRY,
)

share_upload_size_bytes = Histogram(
    "pastely_share_upload_size_bytes",
    "Uploaded file size in bytes",
    ["content_type"],
    buckets=(
        10 * 1024,
        100 * 1024,
        1024 * 1024,
        5 * 1024 * 1024,
        10 * 1024 * 1024,
        25 * 1024 * 1024,
        50 * 1024 * 1024,
    ),
    registry=REGISTRY,
)

api_key_auth_total = Counter(
    "pastely_api_key_auth_total",
    "API key resolution attempts",
    ["result"],  # success | malformed | unknown_prefix | not_found
    registry=REGISTRY,
)


def _node_identity() -> str:
    """Node/instance identifier: NODE_NAME env or hostname."""
    settings = get_settings()
    if settings.node_name:
        return settings.node_name
    try:
        return socket.gethostname()
    except Exception:
        return "unknown"


@asynccontextmanager
async def record_external_request(service: str) -> AsyncGenerator[None, None]:
    """
    Context manager to record external request duration, total count, and errors.
    Use around object storage calls.
    """
    start = time.perf_counter()
    exc_raised = None
    try:
        yield
    except Exception as e:
        exc_raised = e
        external_request_errors_total.labels(service=service).inc()
        external_request_total.labels(service=service, status="failure").inc()
        raise
    finally:
        duration = time.perf_counter() - start
        result = "failure" if exc_raised is not None else "success"
        if exc_raised is None:
            external_request_total.labels(service=service, status="success").inc()
        external_request_duration_seconds.labels(service=service, result=result).observe(duration)


def push_metrics_to_gateway() -> None:
    """
    Push current registry to Prometheus Pushgateway.
    Called periodically when PROMETHEUS_PUSHGATEWAY_URL is set.
    """
    settings = get_settings()
    url = (settings.prometheus_pushgateway_url or "").strip()
    if not url:
        return
    grouping_key = {"instance": settings.instance_ip or _node_identity()}
    try:
        # pushadd_to_gateway uses POST; push_to_gateway uses PUT (some gateways/proxies return 501 for PUT)
        pushadd_to_gateway(url, job="pastely-api", registry=REGISTRY, grouping_key=grouping_key)
    except Exception as e:
        logger.warning("Pushgateway push failed: %s", e, exc_info=False)


async def pushgateway_loop() -> None:
    """
    Background loop: push metrics to Pushgateway at configured interval.
    Returns immediately when PROMETHEUS_PUSHGATEWAY_URL is not set.
    Push is run in thread pool to avoid blocking the event loop.
    """
    settings = get_settings()
    url = (settings.prometheus_pushgateway_url or "").strip()
    if not url:
        return
    interval = max(15, settings.prometheus_push_interval_seconds)
    logger.info(
        "Pushgateway enabled: url=%s interval=%ds",
        url,
        interval,
        extra={"event": "lifecycle"},
    )
    loop = asyncio.get_event_loop()
    while True:
        await asyncio.sleep(interval)
        try:
            await loop.run_in_executor(None, push_metrics_to_gateway)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("Pushgateway push failed: %s", e, exc_info=False)


_app_info = None


def setup_prometheus(app) -> None:
    """
    Register Prometheus instrumentation and custom metrics.

    1. app_info + Instrumentator (FastAPI request metrics).
    2. /metrics 엔드포인트 노출 (스크래핑용).
    """
    global _app_info
    settings = get_settings()

    # 여러 번 호출되어도 중복 등록하지 않도록 함
    if _app_info is None:
        _app_info = Gauge(
            "pastely_app_info",
            "Application and node identity (labels only, value is 1)",
            ["node", "app", "version", "environment"],
            registry=REGISTRY,
        )
    _app_info.labels(
        node=_node_identity(),
        app=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    ).set(1)

    # FastAPI metrics: status 라벨을 2xx/3xx 대신 구체 코드(200, 201, 404, 500 등)로 노출
    Instrumentator(should_group_status_codes=False).instrument(app).expose(
        app, endpoint="/metrics"
    )
