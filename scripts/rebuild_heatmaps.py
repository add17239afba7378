#!/usr/bin/env python3
"""Recompute heatmaps of a stored scan from its observation ledger.

Runs offline: no provider calls and no change to the stored job. Useful to
regenerate outputs after changing the heatmap rules.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from rankgrid import config  # noqa: E402
from rankgrid.heatmap import aggregate  # noqa: E402
from rankgrid.models import HeatmapData  # noqa: E402
from rankgrid.reporting import ensure_dir, write_heatmaps_json  # noqa: E402
from rankgrid.scan_job import ScanJob  # noqa: E402
from rankgrid.store import ScanNotFoundError, ScanStore  # noqa: E402


def rebuild_heatmaps(job: ScanJob) -> Dict[str, HeatmapData]:
    return {
        keyword: aggregate(keyword, job.observations_for(keyword), job.points)
        for keyword in job.keywords
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("scan_id")
    parser.add_argument("--db-path", default=config.DB_PATH)
    parser.add_argument("--out", default=config.OUTPUT_DIR)
    args = parser.parse_args(argv)

    store = ScanStore(args.db_path)
    try:
        job = store.get_job(args.scan_id)
    except ScanNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()

    heatmaps = rebuild_heatmaps(job)
    ensure_dir(args.out)
    path = str(Path(args.out) / f"heatmaps_{job.id}.rebuilt.json")
    write_heatmaps_json(path, heatmaps)
    for keyword, heatmap in heatmaps.items():
        print(f"{keyword}: visibility {heatmap.visibility_score:.1f}% ({heatmap.points_ranking} ranking)")
    print(f"Wrote {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
