import pytest


@pytest.fixture
def anyio_backend():
    # The reconciler schedules Tracks with asyncio tasks
    return "asyncio"
