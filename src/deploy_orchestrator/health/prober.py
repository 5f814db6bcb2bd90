"""HTTP health probing used to gate deployment progress."""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

import requests

from ..config import HealthCheckConfig
from .models import ProbeResult

logger = logging.getLogger(__name__)

# 取消信号的检查间隔（秒）
_CANCEL_POLL = 0.05


def build_health_url(server: str, settings: HealthCheckConfig) -> str:
    """Compose ``<scheme>://<server>:<port><endpoint>``.

    A server that already carries a scheme is treated as a base URL and only
    the endpoint is appended.
    """
    endpoint = settings.endpoint or "/"
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    if "://" in server:
        return server.rstrip("/") + endpoint
    host = server
    if settings.port and ":" not in server:
        host = f"{server}:{settings.port}"
    return f"{settings.scheme}://{host}{endpoint}"


class HealthProber:
    """Polls an HTTP(S) endpoint until it is healthy, the deadline passes, or
    the caller cancels.

    `probe` never raises. Network errors, unexpected status codes and body
    mismatches are failed attempts, reported through ``last_error``.
    """

    def __init__(
        self,
        *,
        session_factory: Optional[Callable[[], requests.Session]] = None,
        verify_tls: bool = True,
    ) -> None:
        self._session_factory = session_factory or requests.Session
        self.verify_tls = verify_tls

    def probe(
        self,
        url: str,
        expected_status: int = 200,
        expected_body_pattern: Optional[str] = None,
        *,
        timeout: float = 120.0,
        retry_interval: float = 5.0,
        request_timeout: float = 10.0,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProbeResult:
        """
        Poll `url` until the success criteria are met.

        Args:
            url: Endpoint to GET
            expected_status: Status code that counts as healthy
            expected_body_pattern: Optional regex the body must contain
            timeout: Overall probe deadline in seconds
            retry_interval: Pause between attempts, clamped to the deadline
            request_timeout: Per-request timeout, independent of `timeout`
            cancel_event: Aborts the loop during a request or a pause

        Returns:
            ProbeResult
        """
        try:
            body_pattern = re.compile(expected_body_pattern) if expected_body_pattern else None
        except re.error as exc:
            return ProbeResult(False, None, 0, f"Invalid body pattern: {exc}")

        deadline = time.monotonic() + timeout
        attempts = 0
        last_error: Optional[str] = None
        last_status: Optional[int] = None
        last_elapsed_ms: Optional[float] = None

        session = self._session_factory()
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="health-probe")
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    return ProbeResult(False, last_elapsed_ms, attempts, "cancelled", last_status)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break

                attempts += 1
                per_request = min(request_timeout, remaining)
                started = time.monotonic()
                future = pool.submit(
                    session.get,
                    url,
                    timeout=per_request,
                    verify=self.verify_tls,
                    allow_redirects=True,
                )
                if not self._await(future, cancel_event):
                    return ProbeResult(False, last_elapsed_ms, attempts, "cancelled", last_status)
                last_elapsed_ms = (time.monotonic() - started) * 1000.0

                try:
                    response = future.result()
                except requests.RequestException as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    last_status = None
                except Exception as exc:
                    last_error = str(exc) or type(exc).__name__
                    last_status = None
                else:
                    last_status = response.status_code
                    if response.status_code != expected_status:
                        last_error = (
                            f"Unexpected status {response.status_code} (expected {expected_status})"
                        )
                    elif body_pattern is not None and not body_pattern.search(response.text or ""):
                        last_error = f"Response body did not match /{expected_body_pattern}/"
                    else:
                        logger.debug("Health check passed: %s (%.0f ms)", url, last_elapsed_ms)
                        return ProbeResult(True, last_elapsed_ms, attempts, None, last_status)

                logger.debug("Health attempt %d on %s failed: %s", attempts, url, last_error)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                pause = min(retry_interval, remaining)
                if cancel_event is not None:
                    if cancel_event.wait(pause):
                        return ProbeResult(False, last_elapsed_ms, attempts, "cancelled", last_status)
                else:
                    time.sleep(pause)
        finally:
            pool.shutdown(wait=False)
            session.close()

        return ProbeResult(
            False,
            last_elapsed_ms,
            attempts,
            last_error or f"Health check timed out after {timeout} seconds",
            last_status,
        )

    def probe_with_settings(
        self,
        url: str,
        settings: HealthCheckConfig,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProbeResult:
        return self.probe(
            url,
            settings.expected_status,
            settings.expected_body,
            timeout=settings.timeout,
            retry_interval=settings.retry_interval,
            request_timeout=settings.request_timeout,
            cancel_event=cancel_event,
        )

    @staticmethod
    def _await(future: Future, cancel_event: Optional[threading.Event]) -> bool:
        """Block until `future` finishes; False if cancelled first."""
        if cancel_event is None:
            wait([future])
            return True
        while True:
            done, _ = wait([future], timeout=_CANCEL_POLL)
            if done:
                return True
            if cancel_event.is_set():
                future.cancel()
                return False
