"""HTTP client with retry/backoff and request metrics."""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class ProviderError(RuntimeError):
    """The ranking provider rejected a request or reported a task failure."""


@dataclass
class RequestMetrics:
    network_calls: int = 0
    cache_hits: int = 0
    retries: int = 0
    point_failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, name: str, count: int = 1) -> None:
        if name not in ("network_calls", "cache_hits", "retries", "point_failures"):
            raise ValueError(f"Unknown metric: {name}")
        with self._lock:
            setattr(self, name, getattr(self, name) + count)

    def as_dict(self) -> Dict[str, int]:
        with self._lock:
            return {
                "network_calls": self.network_calls,
                "cache_hits": self.cache_hits,
                "retries": self.retries,
                "point_failures": self.point_failures,
            }


class HttpClient:
    def __init__(
        self,
        auth: Optional[Tuple[str, str]] = None,
        timeout: int = 60,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.auth = auth
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.metrics = metrics
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Any,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if extra_headers:
            headers.update(extra_headers)

        payload = json.dumps(body)
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.post(
                    url, data=payload, headers=headers, auth=self.auth, timeout=self.timeout
                )
            except requests.RequestException as exc:
                if attempt >= self.retry_max:
                    raise
                logger.warning("Request to %s failed (attempt %s): %s", url, attempt, exc)
                self._wait_before_retry(attempt)
                continue

            status = resp.status_code
            if status == 200:
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise

            if status in RETRYABLE_STATUSES:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                self._wait_before_retry(attempt, resp.headers.get("Retry-After"))
                continue

            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()
            raise ProviderError(f"Unexpected HTTP {status} from {url}")

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _wait_before_retry(self, attempt: int, retry_after: Optional[str] = None) -> None:
        if self.metrics is not None:
            self.metrics.inc("retries")
        time.sleep(self._retry_delay(attempt, retry_after))

    def _retry_delay(self, attempt: int, retry_after: Optional[str] = None) -> float:
        """Seconds to wait: the server's Retry-After when usable, else capped
        exponential backoff plus jitter."""
        if retry_after:
            try:
                return max(0.0, min(float(retry_after), self.backoff_max))
            except ValueError:
                pass
        delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)
        return delay + random.uniform(0, self.backoff_base)
