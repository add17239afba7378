#!/usr/bin/env python3
"""Re-run a stored scan against its recorded provider responses.

No provider calls are made: every check is answered from the
responses_{id}.json file written next to the scan outputs. The replayed
heatmaps are written to heatmaps_{id}.replay.json and compared byte for byte
with the stored ones.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from rankgrid import config  # noqa: E402
from rankgrid.cache import ResultCache  # noqa: E402
from rankgrid.http import ProviderError, RequestMetrics  # noqa: E402
from rankgrid.models import GridPoint, HeatmapData  # noqa: E402
from rankgrid.orchestrator import ScanOrchestrator  # noqa: E402
from rankgrid.reporting import ensure_dir, heatmaps_to_json, load_responses_json, write_heatmaps_json  # noqa: E402
from rankgrid.scan_job import ScanJob  # noqa: E402
from rankgrid.store import ScanNotFoundError, ScanStore  # noqa: E402


class OfflineMapsClient:
    """Stands in for MapsClient when only recorded responses may be used."""

    def __init__(self) -> None:
        self.metrics = RequestMetrics()

    def search(self, keyword, lat, lng, zoom, language_code=None, device=None, depth=None):
        raise ProviderError(f"No recorded response for '{keyword}' at {lat:.5f},{lng:.5f}")


def fresh_copy(job: ScanJob) -> ScanJob:
    """A pending job with the stored scan's inputs and none of its results."""
    return ScanJob(
        business=job.business,
        config=job.config,
        points=[GridPoint(p.position, p.lat, p.lng, p.distance_km) for p in job.points],
        keywords=list(job.keywords),
        total_cost=job.total_cost,
    )


def replay_scan(job: ScanJob, cache: ResultCache) -> Dict[str, HeatmapData]:
    orchestrator = ScanOrchestrator(OfflineMapsClient(), cache=cache, batch_delay_seconds=0.0)
    return orchestrator.run(fresh_copy(job))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("scan_id")
    parser.add_argument("--responses", default=None, help="Defaults to <out>/responses_<scan_id>.json")
    parser.add_argument("--db-path", default=config.DB_PATH)
    parser.add_argument("--out", default=config.OUTPUT_DIR)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    store = ScanStore(args.db_path)
    try:
        job = store.get_job(args.scan_id)
    except ScanNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()

    responses_path = args.responses or str(Path(args.out) / f"responses_{job.id}.json")
    if not Path(responses_path).exists():
        print(f"Error: recorded responses not found: {responses_path}", file=sys.stderr)
        return 1
    cache = ResultCache.from_rows(load_responses_json(responses_path))

    heatmaps = replay_scan(job, cache)
    ensure_dir(args.out)
    path = str(Path(args.out) / f"heatmaps_{job.id}.replay.json")
    write_heatmaps_json(path, heatmaps)
    print(f"Wrote {path}")

    if not job.heatmaps:
        print("Stored scan has no heatmaps to compare against")
        return 0
    if heatmaps_to_json(heatmaps) != heatmaps_to_json(job.heatmaps):
        print("Replay differs from the stored heatmaps", file=sys.stderr)
        return 1
    print("Replay matches the stored heatmaps")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
