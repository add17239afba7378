"""Drive a ScanJob through every keyword x grid point check."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import requests

from . import config
from .cache import ResultCache
from .geo import zoom_for_radius
from .heatmap import aggregate
from .http import ProviderError, RequestMetrics
from .maps_client import MapsClient, ProviderResponseError, parse_maps_response
from .matching import EntityMatcher, top_competitors
from .models import GridPoint, HeatmapData, RankObservation
from .scan_job import (
    ScanCancelledError,
    ScanFailedByObserverError,
    ScanJob,
    ScanStoppedError,
    StopToken,
)
from .store import ScanCredits, ScanStore

logger = logging.getLogger(__name__)

POINT_ERRORS = (requests.RequestException, ProviderError, ProviderResponseError, ValueError)

Listener = Callable[[ScanJob], None]


def batched(points: Sequence[GridPoint], size: int) -> List[List[GridPoint]]:
    return [list(points[i : i + size]) for i in range(0, len(points), size)]


class ScanOrchestrator:
    def __init__(
        self,
        maps_client: MapsClient,
        store: Optional[ScanStore] = None,
        matcher: Optional[EntityMatcher] = None,
        cache: Optional[ResultCache] = None,
        batch_size: int = config.BATCH_SIZE,
        batch_delay_seconds: float = config.BATCH_DELAY_SECONDS,
        max_workers: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        credits: Optional[ScanCredits] = None,
        listeners: Iterable[Listener] = (),
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.maps_client = maps_client
        self.store = store
        self.matcher = matcher or EntityMatcher()
        self.cache = cache if cache is not None else ResultCache()
        self.batch_size = int(batch_size)
        self.batch_delay_seconds = max(0.0, float(batch_delay_seconds))
        self.max_workers = max_workers or self.batch_size
        self.sleep = sleep
        self.credits = credits
        self.listeners: List[Listener] = list(listeners)
        self.metrics = metrics or getattr(maps_client, "metrics", None) or RequestMetrics()

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def run(self, job: ScanJob, cancel_event: Optional[threading.Event] = None) -> Dict[str, HeatmapData]:
        """Scan every keyword over the grid and return the per-keyword heatmaps.

        Point-level failures become null-rank observations. Anything else
        fails the job, which is persisted when possible before re-raising.
        """
        try:
            if cancel_event is not None and cancel_event.is_set():
                self._stop(job, cancel_event)
            job.start_scanning()
            self._save(job)
            logger.info(
                "Scan %s started: %s points x %s keywords for %s",
                job.id,
                len(job.points),
                len(job.keywords),
                job.business.name,
            )

            zoom = zoom_for_radius(job.config.radius_km)
            batches = batched(job.points, self.batch_size)
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for kw_index, keyword in enumerate(job.keywords):
                    done = 0
                    for batch_index, batch in enumerate(batches):
                        if cancel_event is not None and cancel_event.is_set():
                            self._stop(job, cancel_event)
                        futures = [
                            executor.submit(self._scan_point, job, keyword, point, zoom)
                            for point in batch
                        ]
                        # Barrier: the whole batch settles before progress moves.
                        observations = [f.result() for f in futures]
                        for obs in observations:
                            job.record_observation(obs)
                        done += len(batch)
                        job.record_progress(kw_index, keyword, done)
                        self._save(job)
                        self._publish(job)
                        logger.info(
                            "Scan %s: '%s' %s/%s points (%s/%s checks)",
                            job.id,
                            keyword,
                            done,
                            len(job.points),
                            job.checks_completed,
                            job.total_checks,
                        )
                        last_batch = kw_index == len(job.keywords) - 1 and batch_index == len(batches) - 1
                        if not last_batch and self.batch_delay_seconds > 0:
                            self.sleep(self.batch_delay_seconds)

                    heatmap = aggregate(keyword, job.observations_for(keyword), job.points)
                    job.set_heatmap(heatmap)
                    job.record_progress(kw_index + 1, keyword, 0)
                    logger.info(
                        "Scan %s: '%s' visibility %.1f%% (%s/%s ranking)",
                        job.id,
                        keyword,
                        heatmap.visibility_score,
                        heatmap.points_ranking,
                        len(job.points),
                    )

            # The live job only turns complete once the completed record is stored.
            finished = job.snapshot()
            finished.complete()
            self._save(finished)
            job.complete(completed_at=finished.completed_at)
            self._publish(job)
            if self.credits is not None:
                self.credits.consume(config.SCAN_CREDITS_PER_RUN)
            logger.info("Scan %s complete. metrics=%s", job.id, self.metrics.as_dict())
            return dict(job.heatmaps)
        except ScanStoppedError:
            logger.info("Scan %s stopped (%s). metrics=%s", job.id, job.status.value, self.metrics.as_dict())
            raise
        except Exception as exc:
            logger.error("Scan %s failed: %s", job.id, exc, exc_info=True)
            if not job.status.terminal:
                job.fail(str(exc) or type(exc).__name__)
                self._save_best_effort(job)
            raise

    def _scan_point(self, job: ScanJob, keyword: str, point: GridPoint, zoom: int) -> RankObservation:
        def fetch():
            return self.maps_client.search(
                keyword,
                point.lat,
                point.lng,
                zoom,
                language_code=job.config.language_code,
                device=job.config.device,
                depth=job.config.depth,
            )

        try:
            payload, from_cache = self.cache.get_or_fetch(keyword, point.lat, point.lng, fetch)
            if from_cache:
                self.metrics.inc("cache_hits")
            items = parse_maps_response(payload)
        except POINT_ERRORS as exc:
            logger.warning("Point %s failed for '%s': %s", point.position, keyword, exc)
            self.metrics.inc("point_failures")
            return RankObservation(
                keyword=keyword,
                position=point.position,
                rank=None,
                url=None,
                tier=None,
                error=f"{type(exc).__name__}: {exc}",
            )

        match = self.matcher.match(items, job.business)
        return RankObservation(
            keyword=keyword,
            position=point.position,
            rank=match.rank,
            url=match.url,
            tier=match.tier,
            competitors=tuple(top_competitors(items)),
        )

    def _stop(self, job: ScanJob, cancel_event: threading.Event) -> None:
        reason = cancel_event.failure_reason if isinstance(cancel_event, StopToken) else None
        if reason:
            job.mark_failed_by_observer(reason)
        else:
            job.cancel()
        self._save(job)
        self._publish(job)
        if reason:
            raise ScanFailedByObserverError(f"Scan {job.id} failed: {reason}")
        raise ScanCancelledError(f"Scan {job.id} cancelled")

    def _save(self, job: ScanJob) -> None:
        if self.store is not None:
            self.store.save_job(job)

    def _save_best_effort(self, job: ScanJob) -> None:
        if self.store is None:
            return
        try:
            self.store.save_job(job)
        except Exception:
            logger.exception("Could not persist failed state for scan %s", job.id)

    def _publish(self, job: ScanJob) -> None:
        if not self.listeners:
            return
        snapshot = job.snapshot()
        for listener in self.listeners:
            listener(snapshot)
