import pytest

from rankgrid.reporting import atomic_write_text, atomic_writer


def test_atomic_write_text(tmp_path):
    path = tmp_path / "summary.txt"

    atomic_write_text(str(path), "first")
    assert path.read_text(encoding="utf-8") == "first"

    atomic_write_text(str(path), "second")
    assert path.read_text(encoding="utf-8") == "second"

    leftovers = [p for p in tmp_path.iterdir() if p.name != "summary.txt"]
    assert not leftovers


def test_failed_write_keeps_previous_file(tmp_path):
    path = tmp_path / "progress.json"
    atomic_write_text(str(path), "{}")

    with pytest.raises(RuntimeError):
        with atomic_writer(str(path)) as f:
            f.write('{"status": "scan')
            raise RuntimeError("interrupted")

    assert path.read_text(encoding="utf-8") == "{}"
    assert [p.name for p in tmp_path.iterdir()] == ["progress.json"]
