"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, TextIO

from .models import HeatmapData
from .scan_job import ScanJob


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_text(path: str, text: str) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        f.write(text)


def heatmaps_to_json(heatmaps: Mapping[str, HeatmapData]) -> str:
    # Keyword order is kept; keys inside each heatmap are sorted so two runs
    # over the same observations produce identical bytes.
    payload = [heatmaps[kw].to_dict() for kw in heatmaps]
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)


def write_heatmaps_json(path: str, heatmaps: Mapping[str, HeatmapData]) -> None:
    atomic_write_text(path, heatmaps_to_json(heatmaps))


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


POINT_FIELDS = [
    "keyword",
    "position",
    "lat",
    "lng",
    "distance_km",
    "rank",
    "match_tier",
    "url",
    "error",
    "competitors",
]


def write_points_csv(path: str, job: ScanJob) -> None:
    """One row per keyword x grid point, keywords in scan order."""
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=POINT_FIELDS)
        writer.writeheader()
        for keyword in job.keywords:
            for point in job.points:
                result = point.results.get(keyword)
                writer.writerow(
                    {
                        "keyword": keyword,
                        "position": point.position,
                        "lat": point.lat,
                        "lng": point.lng,
                        "distance_km": round(point.distance_km, 3),
                        "rank": result.rank if result else None,
                        "match_tier": result.tier.value if result and result.tier else None,
                        "url": result.url if result else None,
                        "error": result.error if result else None,
                        "competitors": json.dumps(
                            [c.to_dict() for c in result.competitors] if result else [],
                            ensure_ascii=False,
                        ),
                    }
                )


def write_summary(path: str, summary_lines: List[str]) -> None:
    atomic_write_text(path, "\n".join(summary_lines))


def render_scan_summary(job: ScanJob, metrics: Optional[Mapping[str, int]] = None) -> List[str]:
    lines = [
        f"Scan: {job.id}",
        f"Business: {job.business.name}",
        f"Status: {job.status.value}",
        f"Grid: {job.config.grid_size}x{job.config.grid_size}, radius {job.config.radius_km:g} km",
        f"Checks: {job.checks_completed}/{job.total_checks}",
        f"Estimated cost: ${job.total_cost:.3f}",
        f"Created: {job.created_at}",
    ]
    if job.completed_at:
        lines.append(f"Finished: {job.completed_at}")
    if job.error:
        lines.append(f"Error: {job.error}")
    for keyword in job.keywords:
        heatmap = job.heatmaps.get(keyword)
        if heatmap is None:
            lines.append(f"- {keyword}: not aggregated")
            continue
        avg = f"{heatmap.average_rank:.1f}" if heatmap.points_ranking else "n/a"
        lines.append(
            f"- {keyword}: visibility {heatmap.visibility_score:.1f}%, "
            f"avg rank {avg}, ranking {heatmap.points_ranking}, "
            f"top3 {heatmap.top3_count}, not ranking {heatmap.not_ranking}"
        )
    if metrics:
        lines.append(
            "Requests: network={network_calls} cache_hits={cache_hits} "
            "retries={retries} point_failures={point_failures}".format(**metrics)
        )
    return lines


def write_responses_json(path: str, rows: List[Dict[str, Any]]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(rows, f, ensure_ascii=False)


def load_responses_json(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError(f"{path}: expected a list of recorded responses")
    return rows


def write_scan_outputs(
    output_dir: str,
    job: ScanJob,
    metrics: Optional[Mapping[str, int]] = None,
    responses: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, str]:
    ensure_dir(output_dir)
    paths = {
        "heatmaps": os.path.join(output_dir, f"heatmaps_{job.id}.json"),
        "points": os.path.join(output_dir, f"points_{job.id}.csv"),
        "summary": os.path.join(output_dir, f"summary_{job.id}.txt"),
    }
    write_heatmaps_json(paths["heatmaps"], job.heatmaps)
    write_points_csv(paths["points"], job)
    write_summary(paths["summary"], render_scan_summary(job, metrics))
    if responses is not None:
        paths["responses"] = os.path.join(output_dir, f"responses_{job.id}.json")
        write_responses_json(paths["responses"], responses)
    return paths


class ProgressReporter:
    """Scan listener that mirrors job progress into a JSON file.

    Writes are throttled; terminal states are always written.
    """

    def __init__(
        self,
        output_path: Optional[str],
        write_interval_seconds: float = 2.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.output_path = output_path
        self.write_interval_seconds = float(write_interval_seconds)
        self.logger = logger or logging.getLogger(__name__)
        self.last_payload: Optional[Dict[str, Any]] = None
        self._last_write: Optional[float] = None

    def __call__(self, job: ScanJob) -> None:
        self.last_payload = {
            "scan_id": job.id,
            "status": job.status.value,
            "current_keyword": job.progress.current_keyword,
            "keywords_completed": job.progress.current_keyword_index,
            "total_keywords": job.progress.total_keywords,
            "checks_completed": job.checks_completed,
            "total_checks": job.total_checks,
            "error": job.error,
            "timestamp": utc_now_iso(),
        }
        self._write_if_due(force=job.status.terminal)

    def flush(self) -> None:
        self._write_if_due(force=True)

    def _write_if_due(self, force: bool = False) -> None:
        if not self.output_path or self.last_payload is None:
            return
        now = time.monotonic()
        if not force and self._last_write is not None and (now - self._last_write) < self.write_interval_seconds:
            return
        with atomic_writer(self.output_path, mode="w", encoding="utf-8") as f:
            json.dump(self.last_payload, f, ensure_ascii=False, indent=2)
        self._last_write = now
        self.logger.debug("Progress written to %s", self.output_path)
