import pytest

import run
from rankgrid.geo import generate_grid_points
from rankgrid.models import BusinessIdentity, Keyword, ScanConfig
from rankgrid.scan_job import ScanJob
from rankgrid.store import ScanStore


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    for name in ("RANKGRID_MATCH_OVERLAP_THRESHOLD", "RANKGRID_BATCH_SIZE", "RANKGRID_BATCH_DELAY_SECONDS", "RANKGRID_DB_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_estimate_prints_cost_and_time(tmp_path, capsys):
    code = run.main(
        ["--estimate", "--grid-size", "5", "--keywords", "plumber, drain cleaning,roofer", "--db-path", str(tmp_path / "s.db")]
    )
    out = capsys.readouterr().out
    assert code == 0
    assert "- checks: 75" in out
    assert "- cost: $0.150" in out
    assert "- time: ~8-15 min" in out


def test_grant_and_list(tmp_path, capsys):
    db_path = str(tmp_path / "s.db")
    assert run.main(["--grant-credits", "3", "--account", "acct", "--db-path", db_path]) == 0
    assert "Account acct: 3 scan credits" in capsys.readouterr().out

    store = ScanStore(db_path)
    scan_cfg = ScanConfig(grid_size=3, radius_km=2.0, keywords=(Keyword("plumber"),))
    job = ScanJob(
        business=BusinessIdentity(name="Acme Plumbing", lat=40.7, lng=-74.0),
        config=scan_cfg,
        points=generate_grid_points(40.7, -74.0, 3, 2.0),
        keywords=["plumber"],
    )
    store.save_job(job)
    store.close()

    assert run.main(["--list-scans", "--db-path", db_path]) == 0
    out = capsys.readouterr().out
    assert job.id in out
    assert "Acme Plumbing" in out

    assert run.main(["--show-scan", job.id, "--db-path", db_path]) == 0
    assert "Status: pending" in capsys.readouterr().out


def test_unknown_scan_exits_1(tmp_path, capsys):
    assert run.main(["--show-scan", "missing", "--db-path", str(tmp_path / "s.db")]) == 1
    assert "missing" in capsys.readouterr().err


def test_scan_without_keywords_is_a_config_error(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("DATAFORSEO_LOGIN", "login")
    monkeypatch.setenv("DATAFORSEO_PASSWORD", "secret")
    db_path = str(tmp_path / "s.db")
    run.main(["--grant-credits", "1", "--db-path", db_path])

    code = run.main(
        [
            "--business-name",
            "Acme Plumbing",
            "--center-lat",
            "40.7",
            "--center-lng",
            "-74.0",
            "--db-path",
            db_path,
            "--out",
            str(tmp_path / "out"),
        ]
    )
    assert code == 2
    assert "keyword" in capsys.readouterr().err
    assert ScanStore(db_path).list_jobs() == []


def test_missing_credentials_is_a_config_error(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("DATAFORSEO_LOGIN", raising=False)
    monkeypatch.delenv("DATAFORSEO_PASSWORD", raising=False)
    code = run.main(
        ["--business-name", "Acme", "--center-lat", "1", "--center-lng", "2", "--keywords", "plumber", "--db-path", str(tmp_path / "s.db")]
    )
    assert code == 2
    assert "DATAFORSEO_LOGIN" in capsys.readouterr().err


def test_explicit_missing_config_file(tmp_path, capsys):
    code = run.main(["--estimate", "--config", str(tmp_path / "nope.json"), "--db-path", str(tmp_path / "s.db")])
    assert code == 2
    assert "Scan config not found" in capsys.readouterr().err
