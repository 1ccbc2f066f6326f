import copy
import os

import pytest

from azure_mocks import MOCKS
from config import load_config

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture
def mocks():
    MOCKS.registered.clear()
    return MOCKS


@pytest.fixture
def config_data(monkeypatch):
    # package_path and archive sources are relative to the project directory
    monkeypatch.chdir(ROOT)
    return copy.deepcopy(load_config(os.path.join(ROOT, "config.yaml")))


@pytest.fixture
def messaging_env(monkeypatch):
    values = {
        "MESSAGING_ACCOUNT_ID": "AC-test-account",
        "MESSAGING_AUTH_TOKEN": "test-auth-token",
        "MESSAGING_SENDER_ID": "+15550100",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values
