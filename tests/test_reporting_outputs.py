import csv
import json
from pathlib import Path

from rankgrid.geo import generate_grid_points
from rankgrid.heatmap import aggregate
from rankgrid.models import BusinessIdentity, Competitor, Keyword, MatchTier, RankObservation, ScanConfig
from rankgrid.reporting import ProgressReporter, load_responses_json, render_scan_summary, write_scan_outputs
from rankgrid.scan_job import ScanJob


def make_finished_job():
    config = ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),))
    job = ScanJob(
        business=BusinessIdentity(name="Acme Plumbing", cid="42", lat=52.0, lng=21.0),
        config=config,
        points=generate_grid_points(52.0, 21.0, 3, 2.0),
        keywords=config.active_keywords(),
    )
    job.start_scanning()
    for point in job.points:
        if point.position == 5:
            obs = RankObservation("plumber", 5, 2, "https://acme.example", MatchTier.CID, (Competitor("Rival", 1),))
        elif point.position == 9:
            obs = RankObservation("plumber", 9, None, None, None, error="Timeout: read timed out")
        else:
            obs = RankObservation("plumber", point.position, None, None, None)
        job.record_observation(obs)
    job.record_progress(1, "plumber", 0)
    job.set_heatmap(aggregate("plumber", job.observations_for("plumber"), job.points))
    job.complete()
    return job


def test_scan_outputs_are_written(tmp_path):
    job = make_finished_job()
    paths = write_scan_outputs(str(tmp_path / "out"), job, {"network_calls": 9, "cache_hits": 0, "retries": 1, "point_failures": 1})

    heatmaps = json.loads(Path(paths["heatmaps"]).read_text(encoding="utf-8"))
    assert [h["keyword"] for h in heatmaps] == ["plumber"]
    assert heatmaps[0]["points_ranking"] == 1

    with open(paths["points"], newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 9
    center = rows[4]
    assert center["position"] == "5"
    assert center["rank"] == "2"
    assert center["match_tier"] == "cid"
    assert json.loads(center["competitors"])[0]["name"] == "Rival"
    assert rows[8]["error"] == "Timeout: read timed out"
    assert rows[0]["rank"] == ""

    summary = Path(paths["summary"]).read_text(encoding="utf-8")
    assert "visibility 11.1%" in summary
    assert "point_failures=1" in summary
    assert "responses" not in paths


def test_recorded_responses_are_written_when_given(tmp_path):
    job = make_finished_job()
    rows = [{"keyword": "plumber", "lat": 52.0, "lng": 21.0, "payload": {"tasks": []}}]
    paths = write_scan_outputs(str(tmp_path / "out"), job, responses=rows)

    assert paths["responses"].endswith(f"responses_{job.id}.json")
    assert load_responses_json(paths["responses"]) == rows


def test_summary_of_unfinished_job():
    config = ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),))
    job = ScanJob(
        business=BusinessIdentity(name="Acme Plumbing", lat=52.0, lng=21.0),
        config=config,
        points=generate_grid_points(52.0, 21.0, 3, 2.0),
        keywords=["plumber"],
    )
    job.cancel()
    lines = render_scan_summary(job)
    assert "Status: cancelled" in lines
    assert "- plumber: not aggregated" in lines


def test_progress_reporter_throttles_but_writes_terminal_state(tmp_path):
    path = tmp_path / "progress.json"
    reporter = ProgressReporter(str(path), write_interval_seconds=3600)
    config = ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),))
    job = ScanJob(
        business=BusinessIdentity(name="Acme Plumbing", lat=52.0, lng=21.0),
        config=config,
        points=generate_grid_points(52.0, 21.0, 3, 2.0),
        keywords=["plumber"],
    )
    job.start_scanning()
    job.record_progress(0, "plumber", 5)
    reporter(job.snapshot())
    first = json.loads(path.read_text(encoding="utf-8"))
    assert first["checks_completed"] == 5
    assert first["total_checks"] == 9

    job.record_progress(0, "plumber", 9)
    reporter(job.snapshot())
    assert json.loads(path.read_text(encoding="utf-8"))["checks_completed"] == 5

    job.fail("database is locked")
    reporter(job.snapshot())
    final = json.loads(path.read_text(encoding="utf-8"))
    assert final["status"] == "failed"
    assert final["error"] == "database is locked"


def test_progress_reporter_without_path_is_a_noop():
    reporter = ProgressReporter(None)
    reporter.flush()
    assert reporter.last_payload is None
