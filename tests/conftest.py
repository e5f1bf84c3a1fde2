import json
from pathlib import Path

import pytest

from switchyard.config import get_settings


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "CRITICAL")
    monkeypatch.setenv("SWITCHYARD_CONFIG", str(tmp_path / "switchyard.json"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def write_config(tmp_path: Path):
    def _write(payload: dict) -> Path:
        path = tmp_path / "switchyard.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
