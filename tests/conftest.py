"""Shared fixtures: keep the persistent log out of the working directory."""

import pytest

from subscribely.core.config import Config


@pytest.fixture(autouse=True)
def isolated_logs_db(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, 'LOGS_DB', str(tmp_path / 'app_logs.db'))
    return tmp_path / 'app_logs.db'
