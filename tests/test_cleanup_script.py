import importlib.util
from pathlib import Path

from voice_studio import db
from voice_studio.config import settings

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "cleanup_rate_limits.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("cleanup_rate_limits", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_cleanup_removes_only_stale_windows() -> None:
    db.hit_rate_limit("old", "speech", 60, now=1000.0)
    db.hit_rate_limit("new", "speech", 60, now=2000.0)

    assert db.cleanup_rate_limits(older_than_sec=120, now=2010.0) == 1
    assert db.hit_rate_limit("new", "speech", 60, now=2010.0) == 2
    assert db.hit_rate_limit("old", "speech", 60, now=2010.0) == 1


def test_cleanup_script_main(capsys, monkeypatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_window_sec", 60)
    db.hit_rate_limit("old", "speech", 60, now=1000.0)

    _load_script().main()
    assert "Stale rate-limit windows removed: 1" in capsys.readouterr().out
