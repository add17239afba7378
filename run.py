"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv as _load_dotenv

from rankgrid import config
from rankgrid.business import build_identity
from rankgrid.http import HttpClient, RequestMetrics
from rankgrid.maps_client import MapsClient
from rankgrid.models import BusinessIdentity, Keyword, ScanConfig, ScanStatus
from rankgrid.reporting import ProgressReporter, ensure_dir, render_scan_summary, write_scan_outputs
from rankgrid.service import ScanConfigError, ScanService, estimate_cost, estimate_scan_time
from rankgrid.store import ScanCredits, ScanNotFoundError, ScanStore

logger = logging.getLogger("rankgrid.run")


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan local map rankings over a geographic grid")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--estimate", action="store_true", help="Print cost and time estimates and exit")
    group.add_argument("--list-scans", action="store_true", help="List recent scans and exit")
    group.add_argument("--show-scan", type=str, default=None, metavar="ID", help="Show one scan and exit")
    group.add_argument(
        "--grant-credits",
        type=int,
        default=None,
        metavar="N",
        help="Add N scan credits to --account and exit",
    )

    parser.add_argument("--business-name", type=str, default=None)
    parser.add_argument("--domain", type=str, default=None, help="Business website domain")
    parser.add_argument("--cid", type=str, default=None, help="Google Maps CID of the business")
    parser.add_argument("--place-id", type=str, default=None)
    parser.add_argument(
        "--maps-url",
        type=str,
        default=None,
        help="Google Maps URL of the business (name, ids and location are parsed from it)",
    )
    parser.add_argument("--center-lat", type=float, default=None)
    parser.add_argument("--center-lng", type=float, default=None)
    parser.add_argument(
        "--grid-size",
        type=int,
        default=None,
        choices=list(config.GRID_SIZES),
        help=f"Points per side (default: {config.DEFAULT_GRID_SIZE})",
    )
    parser.add_argument(
        "--radius-km",
        type=float,
        default=None,
        help=f"Distance from center to the grid edge in km (default: {config.DEFAULT_RADIUS_KM})",
    )
    parser.add_argument("--keywords", type=str, default=None, help="Comma-separated keywords")
    parser.add_argument(
        "--preset",
        type=str,
        default=None,
        choices=sorted(config.KEYWORD_PRESETS.keys()),
        help="Add an industry keyword preset",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to a scan_config.json")
    parser.add_argument("--db-path", type=str, default=None, help="SQLite scan store path")
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR, help="Output directory")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--batch-delay", type=float, default=None, help="Seconds between batches")
    parser.add_argument("--language", type=str, default=None, help="Provider language code")
    parser.add_argument("--device", type=str, default=None, choices=list(config.SUPPORTED_DEVICES))
    parser.add_argument("--account", type=str, default=config.DEFAULT_ACCOUNT_ID)
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _split_keywords(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def build_business(args: argparse.Namespace, file_cfg: Optional[Dict[str, Any]] = None) -> BusinessIdentity:
    """Merge CLI flags over the business block of an optional scan_config.json."""
    file_cfg = file_cfg or {}
    file_business = dict(file_cfg.get("business") or {})
    file_center = file_cfg.get("center") or {}

    lat = args.center_lat if args.center_lat is not None else file_center.get("lat")
    lng = args.center_lng if args.center_lng is not None else file_center.get("lng")

    try:
        business = build_identity(
            name=args.business_name or file_business.get("name"),
            domain=args.domain or file_business.get("domain"),
            cid=args.cid or (str(file_business["cid"]) if file_business.get("cid") else None),
            place_id=args.place_id or file_business.get("place_id"),
            maps_url=args.maps_url or file_business.get("maps_url"),
            website=file_business.get("website"),
            feature_id=file_business.get("feature_id"),
            address=file_business.get("address"),
            city=file_business.get("city"),
            state=file_business.get("state"),
            zip_code=file_business.get("zip_code"),
            phone=file_business.get("phone"),
            lat=float(lat) if lat is not None else None,
            lng=float(lng) if lng is not None else None,
        )
    except ValueError as exc:
        raise ScanConfigError(str(exc)) from exc
    return business


def build_scan_config(args: argparse.Namespace, file_cfg: Optional[Dict[str, Any]] = None) -> ScanConfig:
    file_cfg = file_cfg or {}
    keywords = _split_keywords(args.keywords) or list(file_cfg.get("keywords") or [])
    if args.preset:
        try:
            keywords += config.preset_keywords(args.preset)
        except config.ConfigError as exc:
            raise ScanConfigError(str(exc)) from exc

    radius_km = args.radius_km
    if radius_km is None:
        radius_km = float(file_cfg.get("radius_km") or config.DEFAULT_RADIUS_KM)
    return ScanConfig(
        grid_size=args.grid_size or int(file_cfg.get("grid_size") or config.DEFAULT_GRID_SIZE),
        radius_km=radius_km,
        keywords=tuple(Keyword(k) for k in keywords),
        language_code=args.language or config.DEFAULT_LANGUAGE_CODE,
        device=args.device or config.DEFAULT_DEVICE,
        depth=config.DEFAULT_DEPTH,
    )


def print_estimate(scan_config: ScanConfig) -> None:
    keywords = scan_config.active_keywords()
    checks = scan_config.point_count * len(keywords)
    low, high = estimate_scan_time(checks)
    print("Scan estimate:")
    print(f"- grid: {scan_config.grid_size}x{scan_config.grid_size} ({scan_config.point_count} points)")
    print(f"- keywords: {len(keywords)}")
    print(f"- checks: {checks}")
    print(f"- cost: ${estimate_cost(scan_config.point_count, len(keywords)):.3f}")
    print(f"- time: ~{low}-{high} min")


def run_scan(
    store: ScanStore,
    business: BusinessIdentity,
    scan_config: ScanConfig,
    args: argparse.Namespace,
) -> int:
    credentials = config.get_provider_credentials()
    metrics = RequestMetrics()
    http_client = HttpClient(
        auth=(credentials.login, credentials.password),
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_max=config.HTTP_RETRY_MAX,
        backoff_base=config.HTTP_BACKOFF_BASE,
        backoff_max=config.HTTP_BACKOFF_MAX,
        metrics=metrics,
    )
    maps_client = MapsClient(http_client, metrics=metrics)

    ensure_dir(args.out)
    progress = ProgressReporter(
        os.path.join(args.out, "progress.json"),
        write_interval_seconds=config.PROGRESS_WRITE_INTERVAL_SECONDS,
    )
    service = ScanService(
        store,
        maps_client,
        workers=1,
        batch_size=args.batch_size,
        batch_delay_seconds=args.batch_delay,
        listeners=[progress],
        keep_responses=True,
    )
    try:
        job_id = service.start_scan(business, scan_config, account_id=args.account)
        print(f"Scan {job_id} started")
        try:
            service.wait(job_id)
        except KeyboardInterrupt:
            print("Interrupted; cancelling scan...", file=sys.stderr)
            service.cancel_scan(job_id)
            service.wait(job_id)
    finally:
        service.shutdown()

    job = service.get_scan_status(job_id)
    for line in render_scan_summary(job, metrics.as_dict()):
        print(line)
    if job.status != ScanStatus.COMPLETE:
        return 1
    cache = service.pop_response_cache(job_id)
    responses = cache.export_rows() if cache is not None else None
    paths = write_scan_outputs(args.out, job, metrics.as_dict(), responses=responses)
    print(f"Done. Heatmaps written to {paths['heatmaps']} and points to {paths['points']}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config.apply_env_overrides()
    except (config.ConfigError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    store = ScanStore(args.db_path or config.DB_PATH)
    try:
        if args.grant_credits is not None:
            remaining = ScanCredits(store, args.account).grant(args.grant_credits)
            print(f"Account {args.account}: {remaining} scan credits")
            return 0

        if args.list_scans:
            for row in store.list_jobs():
                print(f"{row['id']}  {row['status']:<9}  {row['created_at']}  {row['business_name']}")
            return 0

        if args.show_scan:
            job = store.get_job(args.show_scan)
            for line in render_scan_summary(job):
                print(line)
            return 0

        file_cfg = config.load_scan_config(args.config)
        if args.config and file_cfg is None:
            print(f"Scan config not found: {args.config}", file=sys.stderr)
            return 2
        scan_config = build_scan_config(args, file_cfg)
        if args.estimate:
            print_estimate(scan_config)
            return 0

        business = build_business(args, file_cfg)
        return run_scan(store, business, scan_config, args)
    except (ScanConfigError, config.ConfigError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except ScanNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.debug("Run failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
