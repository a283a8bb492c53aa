import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `pos_sync/`.
# Tests import `pos_sync.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from pos_sync.tests.fakes import FakeServer  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pos.sqlite")


@pytest.fixture
def server():
    return FakeServer()
