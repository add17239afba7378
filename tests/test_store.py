import pytest

from rankgrid.geo import generate_grid_points
from rankgrid.models import BusinessIdentity, Keyword, MatchTier, RankObservation, ScanConfig, ScanStatus
from rankgrid.scan_job import ScanJob
from rankgrid.store import ScanCredits, ScanNotFoundError, ScanStore, UsageAllowanceError


def make_job(name="Acme Plumbing"):
    config = ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),))
    return ScanJob(
        business=BusinessIdentity(name=name, lat=52.0, lng=21.0),
        config=config,
        points=generate_grid_points(52.0, 21.0, 3, 2.0),
        keywords=config.active_keywords(),
    )


def test_save_and_get_round_trip(tmp_path):
    store = ScanStore(str(tmp_path / "scans.db"))
    job = make_job()
    job.start_scanning()
    job.record_observation(RankObservation("plumber", 2, 4, "https://acme", MatchTier.CID))
    store.save_job(job)
    store.close()

    reopened = ScanStore(str(tmp_path / "scans.db"))
    loaded = reopened.get_job(job.id)
    assert loaded.status == ScanStatus.SCANNING
    assert loaded.point(2).rank == 4
    assert loaded is not job
    reopened.close()


def test_save_is_an_upsert():
    store = ScanStore(":memory:")
    job = make_job()
    store.save_job(job)
    job.cancel()
    store.save_job(job)
    rows = store.list_jobs()
    assert len(rows) == 1
    assert rows[0]["status"] == "cancelled"
    assert rows[0]["business_name"] == "Acme Plumbing"
    store.close()


def test_get_missing_job_raises():
    store = ScanStore(":memory:")
    with pytest.raises(ScanNotFoundError):
        store.get_job("nope")
    store.close()


def test_list_jobs_newest_first_with_limit():
    store = ScanStore(":memory:")
    ids = []
    for idx in range(3):
        job = make_job(f"Biz {idx}")
        job.created_at = f"2026-01-0{idx + 1}T00:00:00+00:00"
        store.save_job(job)
        ids.append(job.id)
    rows = store.list_jobs(limit=2)
    assert [r["id"] for r in rows] == [ids[2], ids[1]]
    store.close()


def test_credits_grant_consume_and_floor():
    store = ScanStore(":memory:")
    credits = ScanCredits(store, "acct")
    assert credits.remaining() == 0
    with pytest.raises(UsageAllowanceError):
        credits.ensure_available()

    assert credits.grant(2) == 2
    credits.ensure_available()
    assert credits.consume() == 1
    assert credits.consume(5) == 0
    assert ScanCredits(store, "other").remaining() == 0
    with pytest.raises(ValueError):
        credits.grant(0)
    store.close()
