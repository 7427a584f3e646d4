"""
tests/test_config.py
~~~~~~~~~~~~~~~~~~~~
PipelineSettings picks its defaults up from the environment-driven config.
"""

from __future__ import annotations

import importlib

import pytest

from nearby_feed import config
from nearby_feed.pipeline import PipelineSettings


def test_defaults_match_documented_values() -> None:
    settings = PipelineSettings()
    assert settings.min_interval_s == 1.0
    assert settings.min_distance_m == 10.0
    assert settings.min_signal_delta_dbm == 5.0
    assert settings.per_origin_cap == 3


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GATE_MIN_INTERVAL_MS", "2500")
    monkeypatch.setenv("FEED_PER_ORIGIN_CAP", "5")
    monkeypatch.setenv("REMOTE_TIMEOUT_S", "2.5")
    try:
        importlib.reload(config)
        settings = PipelineSettings.from_env()
    finally:
        monkeypatch.undo()
        importlib.reload(config)

    assert settings.min_interval_s == 2.5
    assert settings.per_origin_cap == 5
    assert settings.remote_timeout_s == 2.5
