"""
Minimal backend HTTP server for the risk & drift engine.

Exposes the engine's external interface as JSON endpoints for a dashboard
frontend without introducing new dependencies. The refresh scheduler runs on
an asyncio loop in a background thread; request handlers run in the HTTP
server's threads and hand coroutine work to that loop.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import os
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel

from riskwatch.core.config import config
from riskwatch.core.exceptions import (
    IngestionError,
    InvalidConfigurationError,
    NotFoundError,
    StaleDataError,
)
from riskwatch.core.logging_config import setup_logging
from riskwatch.monitor import RiskMonitor

load_dotenv()

logger = logging.getLogger("backend")

MONITOR: Optional[RiskMonitor] = None
LOOP: Optional[asyncio.AbstractEventLoop] = None

Runner = Callable[[Awaitable[Any]], Any]
Response = Tuple[int, Dict[str, object]]


def _parse_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _dump(model: BaseModel) -> Dict[str, object]:
    return model.model_dump(mode="json")


def _parse_since(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidConfigurationError(f"Invalid 'since' timestamp: {raw}") from exc


def _query_value(query: Dict[str, list], key: str) -> Optional[str]:
    values = query.get(key)
    return values[0] if values else None


def _positive_number(payload: Dict[str, object], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    valid = isinstance(value, (int, float)) and not isinstance(value, bool)
    if not valid or not math.isfinite(value) or value <= 0:
        raise InvalidConfigurationError(f"'{key}' must be a positive number, got {value!r}")
    return float(value)


def _stale_response(exc: StaleDataError) -> Response:
    snapshot = exc.last_snapshot
    return 503, {
        "detail": str(exc),
        "last_snapshot": _dump(snapshot) if snapshot is not None else None,
    }


def dispatch(
    monitor: RiskMonitor,
    method: str,
    path: str,
    payload: Optional[object],
    run: Runner,
) -> Response:
    """
    Route one request to the monitor.

    Args:
        monitor: Monitor serving the request
        method: "GET" or "POST"
        path: Request path including the query string
        payload: Decoded JSON body (POST only)
        run: Executes a coroutine on the scheduler's loop and returns its result

    Returns:
        Tuple of (HTTP status, JSON-serializable body)
    """
    parsed = urlparse(path)
    route = parsed.path.rstrip("/") or "/"
    query = parse_qs(parsed.query)
    parts = route.strip("/").split("/")

    try:
        if method == "GET":
            return _dispatch_get(monitor, route, query)
        if method == "POST":
            return _dispatch_post(monitor, route, parts, payload, run)
        return 405, {"detail": "Method not allowed"}
    except NotFoundError as exc:
        return 404, {"detail": str(exc)}
    except (InvalidConfigurationError, IngestionError) as exc:
        return 400, {"detail": str(exc)}
    except StaleDataError as exc:
        return _stale_response(exc)


def _dispatch_get(monitor: RiskMonitor, route: str, query: Dict[str, list]) -> Response:
    if route == "/health":
        return 200, {"status": "ok", "scheduler": monitor.scheduler.get_stats()}

    if route == "/snapshot":
        return 200, _dump(monitor.current_snapshot())

    if route == "/metrics":
        metrics = monitor.list_classified_metrics(_query_value(query, "category"))
        return 200, {"metrics": [_dump(m) for m in metrics], "total_count": len(metrics)}

    if route == "/anomalies":
        since = _parse_since(_query_value(query, "since"))
        open_only = _parse_bool(_query_value(query, "open"), False)
        anomalies = monitor.list_anomalies(since, open_only=open_only)
        return 200, {"anomalies": [_dump(a) for a in anomalies], "total_count": len(anomalies)}

    if route == "/anomalies/latest":
        anomalies = monitor.last_cycle_anomalies()
        return 200, {"anomalies": [_dump(a) for a in anomalies], "total_count": len(anomalies)}

    if route == "/drift":
        records = monitor.list_drift(_query_value(query, "category"))
        return 200, {"drift": [_dump(r) for r in records], "total_count": len(records)}

    return 404, {"detail": "Not found"}


def _dispatch_post(
    monitor: RiskMonitor,
    route: str,
    parts: list,
    payload: Optional[object],
    run: Runner,
) -> Response:
    if route == "/observations":
        rows = payload.get("observations") if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            return 400, {"detail": "Expected a list of observations"}
        result = monitor.ingest(rows)
        return 200, result.as_dict()

    if route == "/signals":
        if not isinstance(payload, dict):
            return 400, {"detail": "Expected a signal object"}
        event = monitor.ingest_signal(payload)
        return 200, _dump(event)

    if route == "/refresh":
        timeout_ms = _positive_number(payload, "timeout_ms") if isinstance(payload, dict) else None
        snapshot = run(monitor.evaluate(timeout_ms / 1000.0 if timeout_ms else None))
        return 200, _dump(snapshot)

    if route == "/auto-refresh":
        if not isinstance(payload, dict) or "enabled" not in payload:
            return 400, {"detail": "Expected {\"enabled\": bool, \"interval_ms\": int?}"}
        enabled = _parse_bool(payload.get("enabled"), True)
        interval_ms = _positive_number(payload, "interval_ms")

        async def apply() -> None:
            monitor.set_auto_refresh(enabled, int(interval_ms) if interval_ms is not None else None)

        run(apply())
        return 200, monitor.scheduler.get_stats()

    if len(parts) == 4 and parts[0] == "metrics" and parts[2:] == ["baseline", "reset"]:
        metric = monitor.reset_baseline(parts[1])
        return 200, _dump(metric)

    if len(parts) == 3 and parts[0] == "anomalies" and parts[2] == "acknowledge":
        event = monitor.acknowledge_anomaly(parts[1])
        return 200, _dump(event)

    return 404, {"detail": "Not found"}


def _run_on_loop(coro: Awaitable[Any]) -> Any:
    future = asyncio.run_coroutine_threadsafe(coro, LOOP)
    return future.result()


class BackendHandler(BaseHTTPRequestHandler):
    server_version = "RiskwatchBackend/1.0"

    def _send_json(self, status: int, payload: Dict[str, object]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json(self) -> Optional[object]:
        length = int(self.headers.get("Content-Length", "0"))
        if length <= 0:
            return None
        data = self.rfile.read(length)
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None

    def do_GET(self) -> None:
        status, body = dispatch(MONITOR, "GET", self.path, None, _run_on_loop)
        self._send_json(status, body)

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.end_headers()

    def do_POST(self) -> None:
        payload = self._read_json()
        status, body = dispatch(MONITOR, "POST", self.path, payload, _run_on_loop)
        self._send_json(status, body)


def _start_loop() -> asyncio.AbstractEventLoop:
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, name="riskwatch-scheduler", daemon=True)
    thread.start()
    return loop


def run(host: str, port: int, definitions: str, feed: Optional[str], auto_refresh: bool) -> None:
    global MONITOR, LOOP

    logger.info("Loading metric definitions from %s", definitions)
    MONITOR = RiskMonitor.from_file(definitions)
    if feed:
        MONITOR.ingest_file(feed)

    LOOP = _start_loop()
    if not auto_refresh:
        _run_on_loop(_disable_auto_refresh(MONITOR))
    _run_on_loop(MONITOR.start())

    logger.info("Starting backend server on %s:%s", host, port)
    server = ThreadingHTTPServer((host, port), BackendHandler)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()
        _run_on_loop(MONITOR.stop())
        LOOP.call_soon_threadsafe(LOOP.stop)


async def _disable_auto_refresh(monitor: RiskMonitor) -> None:
    monitor.set_auto_refresh(False)


def main() -> None:
    parser = argparse.ArgumentParser(description="Risk & drift engine backend server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--definitions",
        default=os.getenv("RISKWATCH_DEFINITIONS_PATH") or (
            str(config.definitions_path) if config.definitions_path else None
        ),
        help="Metric definition registry (JSON)",
    )
    parser.add_argument("--feed", default=os.getenv("RISKWATCH_FEED"), help="Initial observation feed")
    parser.add_argument("--no-auto-refresh", action="store_true")
    args = parser.parse_args()

    if not args.definitions:
        parser.error("--definitions (or RISKWATCH_DEFINITIONS_PATH) is required")

    setup_logging("riskwatch", "backend")
    run(args.host, args.port, args.definitions, args.feed, not args.no_auto_refresh)


if __name__ == "__main__":
    main()
