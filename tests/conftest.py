from __future__ import annotations

import pytest

from builders import SnapshotBuilder


@pytest.fixture
def builder() -> SnapshotBuilder:
    return SnapshotBuilder()
