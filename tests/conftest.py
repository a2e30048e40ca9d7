import pytest

from tests.factories import Harness, make_harness


@pytest.fixture
def harness() -> Harness:
    return make_harness()
