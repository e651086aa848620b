from __future__ import annotations

import pytest

from tests.fakes import FakeConsumer, RecordingHandler


@pytest.fixture()
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture()
def consumer() -> FakeConsumer:
    return FakeConsumer()
