import os

import pytest


@pytest.fixture(autouse=True)
def clear_hookrelay_env(monkeypatch):
    """Keep HOOKRELAY_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("HOOKRELAY_"):
            monkeypatch.delenv(name, raising=False)
    yield
