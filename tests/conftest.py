import os

import pytest

from config import TrackerSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # Keep TRACKER_* variables from the shell out of the settings under test
    for key in list(os.environ):
        if key.startswith("TRACKER_"):
            monkeypatch.delenv(key)


@pytest.fixture
def settings():
    return TrackerSettings(stats_log_interval=0)
