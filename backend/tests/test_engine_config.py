from __future__ import annotations

import io
import sys

import pytest
from loguru import logger

from engine.config import EngineSettings
from engine.log import configure_logging


def test_settings_defaults(monkeypatch):
    for name in (
        "PARCELMAP_API_URL",
        "PARCELMAP_HTTP_TIMEOUT_S",
        "PARCELMAP_DEBOUNCE_MS",
        "PARCELMAP_MIN_PAN_M",
    ):
        monkeypatch.delenv(name, raising=False)
    s = EngineSettings.from_env()
    assert s == EngineSettings()
    assert s.debounce_s == 0.3


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PARCELMAP_API_URL", "http://api.example:9000/")
    monkeypatch.setenv("PARCELMAP_DEBOUNCE_MS", "150")
    monkeypatch.setenv("PARCELMAP_MIN_PAN_M", "2.5")
    s = EngineSettings.from_env()
    assert s.api_base_url == "http://api.example:9000"
    assert s.debounce_s == pytest.approx(0.15)
    assert s.min_pan_m == 2.5


def test_bad_numeric_env_is_rejected(monkeypatch):
    monkeypatch.setenv("PARCELMAP_HTTP_TIMEOUT_S", "soon")
    with pytest.raises(ValueError, match="PARCELMAP_HTTP_TIMEOUT_S"):
        EngineSettings.from_env()


def test_configure_logging_respects_level(monkeypatch):
    buf = io.StringIO()
    monkeypatch.setattr(sys, "stderr", buf)
    configure_logging("WARNING")
    logger.info("quiet")
    logger.warning("loud")
    monkeypatch.undo()
    configure_logging()

    assert "loud" in buf.getvalue()
    assert "quiet" not in buf.getvalue()
