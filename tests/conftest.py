import os
import random
import sys

import pytest

# Modules live flat under src/, as the Streamlit app imports them
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from feed import poll
from store import MemoryStore, YardStore
from yard import Yard


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
def yard(rng):
    """Default 3 zones x 4 rows x 6 columns, stack limit 2, no persistence."""
    return Yard(rng=rng)


@pytest.fixture
def tiny_yard(rng):
    """One zone, one row, two columns, stack limit 1: saturates quickly."""
    return Yard(zones=("A",), rows_per_zone=1, cols_per_zone=2, stack_limit=1, rng=rng)


@pytest.fixture
def records(rng):
    return poll(6, rng=rng)


@pytest.fixture
def db_store(tmp_path):
    s = YardStore(tmp_path / "yard.db")
    yield s
    s.close()


@pytest.fixture
def memory_store():
    return MemoryStore()
