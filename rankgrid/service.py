"""Control surface for starting and observing grid scans."""
from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from . import config
from .cache import ResultCache
from .geo import generate_grid_points
from .maps_client import MapsClient
from .matching import EntityMatcher
from .models import BusinessIdentity, HeatmapData, ScanConfig, ScanStatus
from .orchestrator import Listener, ScanOrchestrator
from .scan_job import InvalidTransitionError, ScanJob, StopToken
from .store import ScanCredits, ScanStore, UsageAllowanceError

logger = logging.getLogger(__name__)


class ScanConfigError(ValueError):
    """A scan request was rejected before any job was created."""


class HeatmapNotReadyError(KeyError):
    pass


def estimate_cost(point_count: int, keyword_count: int) -> float:
    """Provider spend for a scan; linear in the number of checks."""
    return max(0, int(point_count)) * max(0, int(keyword_count)) * config.COST_PER_CHECK


def estimate_scan_time(total_checks: int) -> Tuple[int, int]:
    """Rough (min, max) wall-clock minutes for a scan of `total_checks` checks."""
    checks = max(0, int(total_checks))
    return math.ceil(checks / 10), math.ceil(checks / 5)


def validate_scan_request(business: BusinessIdentity, scan_config: ScanConfig) -> Tuple[float, float]:
    """Return the scan center or raise ScanConfigError."""
    if not (business.name or "").strip():
        raise ScanConfigError("Business name is required")
    grid_size = scan_config.grid_size
    if isinstance(grid_size, bool) or not isinstance(grid_size, int) or grid_size < 1:
        raise ScanConfigError("Grid size must be a positive integer")
    if grid_size not in config.GRID_SIZES:
        raise ScanConfigError(
            f"Grid size must be one of {', '.join(str(g) for g in config.GRID_SIZES)}"
        )
    if not scan_config.radius_km or scan_config.radius_km <= 0:
        raise ScanConfigError("Radius must be positive")
    if not scan_config.active_keywords():
        raise ScanConfigError("At least one active keyword is required")
    if scan_config.device not in config.SUPPORTED_DEVICES:
        raise ScanConfigError(f"Unsupported device: {scan_config.device}")
    if business.lat is None or business.lng is None:
        raise ScanConfigError("Business location (center coordinates) is required")
    if not -90.0 <= business.lat <= 90.0 or not -180.0 <= business.lng <= 180.0:
        raise ScanConfigError("Center coordinates are out of range")
    return business.lat, business.lng


class ScanService:
    """Starts scans in the background and answers status and heatmap queries.

    The store is the source of truth for readers. Each run gets its own
    ResultCache and StopToken.
    """

    def __init__(
        self,
        store: ScanStore,
        maps_client: MapsClient,
        matcher: Optional[EntityMatcher] = None,
        workers: int = config.SCAN_WORKERS,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        listeners: Iterable[Listener] = (),
        require_credits: bool = True,
        keep_responses: bool = False,
    ) -> None:
        self.store = store
        self.maps_client = maps_client
        self.matcher = matcher
        self.batch_size = batch_size if batch_size is not None else config.BATCH_SIZE
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else config.BATCH_DELAY_SECONDS
        )
        self.sleep = sleep
        self.listeners: List[Listener] = list(listeners)
        self.require_credits = require_credits
        self.keep_responses = keep_responses
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)))
        self._lock = threading.Lock()
        self._tokens: Dict[str, StopToken] = {}
        self._futures: Dict[str, Future] = {}
        self._caches: Dict[str, ResultCache] = {}

    # --- commands ---

    def start_scan(
        self,
        business: BusinessIdentity,
        scan_config: ScanConfig,
        account_id: str = config.DEFAULT_ACCOUNT_ID,
        wait: bool = False,
    ) -> str:
        center_lat, center_lng = validate_scan_request(business, scan_config)

        credits = ScanCredits(self.store, account_id) if self.require_credits else None
        if credits is not None:
            try:
                credits.ensure_available(config.SCAN_CREDITS_PER_RUN)
            except UsageAllowanceError as exc:
                raise ScanConfigError(str(exc)) from exc

        keywords = scan_config.active_keywords()
        points = generate_grid_points(center_lat, center_lng, scan_config.grid_size, scan_config.radius_km)
        job = ScanJob(
            business=business,
            config=scan_config,
            points=points,
            keywords=keywords,
            total_cost=estimate_cost(len(points), len(keywords)),
        )
        self.store.save_job(job)
        logger.info(
            "Queued scan %s for %s (%s checks, est. $%.3f)",
            job.id,
            business.name,
            job.total_checks,
            job.total_cost,
        )

        token = StopToken()
        with self._lock:
            self._tokens[job.id] = token

        if wait:
            self._run(job, token, credits, reraise=True)
        else:
            future = self._executor.submit(self._run, job, token, credits)
            with self._lock:
                self._futures[job.id] = future
        return job.id

    def cancel_scan(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if job.status.terminal:
            raise InvalidTransitionError(f"Scan {job_id} is already {job.status.value}")
        token = self._token(job_id)
        if token is not None:
            token.cancel()
            logger.info("Cancellation requested for scan %s", job_id)
            return
        # Orphaned record from an earlier process: nothing is running it.
        job.cancel()
        self.store.save_job(job)

    def fail_scan(self, job_id: str, reason: str) -> None:
        """Observer failure signal: end the scan as failed with `reason`."""
        job = self.store.get_job(job_id)
        if job.status.terminal:
            raise InvalidTransitionError(f"Scan {job_id} is already {job.status.value}")
        token = self._token(job_id)
        if token is not None:
            token.fail(reason)
            logger.warning("Scan %s flagged as failed by observer: %s", job_id, reason)
            return
        job.mark_failed_by_observer(reason)
        self.store.save_job(job)

    # --- queries ---

    def get_scan_status(self, job_id: str) -> ScanJob:
        return self.store.get_job(job_id)

    def get_heatmap(self, job_id: str, keyword: str) -> HeatmapData:
        job = self.store.get_job(job_id)
        if job.status != ScanStatus.COMPLETE:
            raise HeatmapNotReadyError(f"Scan {job_id} is {job.status.value}, not complete")
        heatmap = job.heatmaps.get(keyword)
        if heatmap is None:
            for name, data in job.heatmaps.items():
                if name.lower() == (keyword or "").strip().lower():
                    return data
            raise HeatmapNotReadyError(f"Scan {job_id} has no heatmap for '{keyword}'")
        return heatmap

    def list_scans(self, limit: int = 20) -> List[Dict[str, object]]:
        return self.store.list_jobs(limit)

    def estimate_cost(self, point_count: int, keyword_count: int) -> float:
        return estimate_cost(point_count, keyword_count)

    def estimate_scan_time(self, total_checks: int) -> Tuple[int, int]:
        return estimate_scan_time(total_checks)

    # --- lifecycle ---

    def pop_response_cache(self, job_id: str) -> Optional[ResultCache]:
        """Hand over the provider responses a finished run recorded.

        Only kept when the service was built with keep_responses=True.
        """
        with self._lock:
            return self._caches.pop(job_id, None)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> ScanJob:
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.store.get_job(job_id)

    def shutdown(self, cancel_running: bool = False) -> None:
        if cancel_running:
            with self._lock:
                tokens = list(self._tokens.values())
            for token in tokens:
                token.cancel()
        self._executor.shutdown(wait=True)

    def _token(self, job_id: str) -> Optional[StopToken]:
        with self._lock:
            return self._tokens.get(job_id)

    def _run(
        self,
        job: ScanJob,
        token: StopToken,
        credits: Optional[ScanCredits],
        reraise: bool = False,
    ) -> None:
        cache = ResultCache()
        if self.keep_responses:
            with self._lock:
                self._caches[job.id] = cache
        orchestrator = ScanOrchestrator(
            self.maps_client,
            store=self.store,
            matcher=self.matcher,
            cache=cache,
            batch_size=self.batch_size,
            batch_delay_seconds=self.batch_delay_seconds,
            sleep=self.sleep,
            credits=credits,
            listeners=self.listeners,
        )
        try:
            orchestrator.run(job, cancel_event=token)
        except Exception:
            # Stopped and failed runs are already logged and persisted.
            if reraise:
                raise
        finally:
            with self._lock:
                self._tokens.pop(job.id, None)
