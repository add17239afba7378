import threading

import pytest

from rankgrid.geo import generate_grid_points
from rankgrid.http import RequestMetrics
from rankgrid.models import BusinessIdentity, Keyword, ScanConfig, ScanStatus
from rankgrid.scan_job import InvalidTransitionError, ScanJob
from rankgrid.service import (
    HeatmapNotReadyError,
    ScanConfigError,
    ScanService,
    estimate_cost,
    estimate_scan_time,
)
from rankgrid.store import ScanCredits, ScanNotFoundError, ScanStore


def maps_payload(items):
    return {"status_code": 20000, "tasks": [{"status_code": 20000, "result": [{"items": items}]}]}


class FakeMapsClient:
    def __init__(self, gate=None):
        self.metrics = RequestMetrics()
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def search(self, keyword, lat, lng, zoom, language_code="en", device="desktop", depth=20):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        with self._lock:
            self.calls += 1
        return maps_payload([{"type": "maps_search", "rank_group": 2, "title": "Acme Plumbing", "cid": "42"}])


BUSINESS = BusinessIdentity(name="Acme Plumbing", cid="42", lat=40.7128, lng=-74.006)


def scan_config(grid_size=3, radius_km=2.0, keywords=("plumber",)):
    return ScanConfig(grid_size=grid_size, radius_km=radius_km, keywords=tuple(Keyword(k) for k in keywords))


@pytest.fixture
def store():
    s = ScanStore(":memory:")
    yield s
    s.close()


def make_service(store, client=None, credits=5, **kwargs):
    if credits:
        ScanCredits(store, "default").grant(credits)
    return ScanService(
        store,
        client or FakeMapsClient(),
        batch_delay_seconds=0.0,
        sleep=lambda _s: None,
        **kwargs,
    )


def test_estimate_cost_and_time():
    assert estimate_cost(25, 3) == pytest.approx(0.15)
    assert estimate_cost(9, 0) == 0
    assert estimate_scan_time(75) == (8, 15)
    assert estimate_scan_time(0) == (0, 0)


@pytest.mark.parametrize(
    "business,config",
    [
        (BUSINESS, scan_config(keywords=())),
        (BUSINESS, ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber", active=False),))),
        (BUSINESS, scan_config(grid_size=4)),
        (BUSINESS, scan_config(radius_km=0)),
        (BusinessIdentity(name="Acme Plumbing"), scan_config()),
        (BusinessIdentity(name="Acme Plumbing", lat=95.0, lng=0.0), scan_config()),
        (BUSINESS, ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),), device="tablet")),
    ],
)
def test_invalid_requests_create_no_job(store, business, config):
    service = make_service(store)
    with pytest.raises(ScanConfigError):
        service.start_scan(business, config)
    assert store.list_jobs() == []
    service.shutdown()


def test_scan_needs_a_credit(store):
    service = make_service(store, credits=0)
    with pytest.raises(ScanConfigError):
        service.start_scan(BUSINESS, scan_config())
    assert store.list_jobs() == []
    service.shutdown()


def test_start_scan_and_wait_inline(store):
    client = FakeMapsClient()
    service = make_service(store, client)
    job_id = service.start_scan(BUSINESS, scan_config(keywords=("plumber", "drain cleaning")), wait=True)

    job = service.get_scan_status(job_id)
    assert job.status == ScanStatus.COMPLETE
    assert job.total_cost == pytest.approx(18 * 0.002)
    assert client.calls == 18
    assert service.get_heatmap(job_id, "plumber").points_ranking == 9
    assert service.get_heatmap(job_id, "Drain Cleaning").keyword == "drain cleaning"
    assert ScanCredits(store, "default").remaining() == 4
    assert service.list_scans()[0]["id"] == job_id
    service.shutdown()


def test_recorded_responses_handed_over_once(store):
    service = make_service(store, keep_responses=True)
    job_id = service.start_scan(BUSINESS, scan_config(), wait=True)

    cache = service.pop_response_cache(job_id)
    assert len(cache) == 9
    assert {row["keyword"] for row in cache.export_rows()} == {"plumber"}
    assert service.pop_response_cache(job_id) is None

    plain = make_service(store, credits=0)
    other_id = plain.start_scan(BUSINESS, scan_config(), wait=True)
    assert plain.pop_response_cache(other_id) is None
    service.shutdown()
    plain.shutdown()


def test_heatmap_errors(store):
    service = make_service(store)
    job_id = service.start_scan(BUSINESS, scan_config(), wait=True)
    with pytest.raises(HeatmapNotReadyError):
        service.get_heatmap(job_id, "roofer")
    with pytest.raises(ScanNotFoundError):
        service.get_heatmap("missing", "plumber")

    pending = ScanJob(
        business=BUSINESS,
        config=scan_config(),
        points=generate_grid_points(BUSINESS.lat, BUSINESS.lng, 3, 2.0),
        keywords=["plumber"],
    )
    store.save_job(pending)
    with pytest.raises(HeatmapNotReadyError):
        service.get_heatmap(pending.id, "plumber")
    service.shutdown()


def _stored_pending_job(store):
    job = ScanJob(
        business=BUSINESS,
        config=scan_config(),
        points=generate_grid_points(BUSINESS.lat, BUSINESS.lng, 3, 2.0),
        keywords=["plumber"],
    )
    store.save_job(job)
    return job.id


def test_cancel_and_fail_orphaned_jobs(store):
    service = make_service(store)

    cancelled = _stored_pending_job(store)
    service.cancel_scan(cancelled)
    assert service.get_scan_status(cancelled).status == ScanStatus.CANCELLED
    with pytest.raises(InvalidTransitionError):
        service.cancel_scan(cancelled)

    failed = _stored_pending_job(store)
    service.fail_scan(failed, "dashboard lost track of the scan")
    job = service.get_scan_status(failed)
    assert job.status == ScanStatus.FAILED
    assert job.error == "observer: dashboard lost track of the scan"
    service.shutdown()


def test_background_scan_completes(store):
    seen = []
    service = make_service(store, listeners=[lambda snap: seen.append(snap.status)])
    job_id = service.start_scan(BUSINESS, scan_config())
    job = service.wait(job_id, timeout=10)
    assert job.status == ScanStatus.COMPLETE
    assert seen[-1] == ScanStatus.COMPLETE
    service.shutdown()


def test_cancel_running_scan(store):
    gate = threading.Event()
    client = FakeMapsClient(gate=gate)
    service = make_service(store, client)
    job_id = service.start_scan(BUSINESS, scan_config())
    service.cancel_scan(job_id)
    gate.set()

    job = service.wait(job_id, timeout=10)
    assert job.status == ScanStatus.CANCELLED
    assert client.calls < 9
    assert ScanCredits(store, "default").remaining() == 5
    service.shutdown()
