import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure the package and the shared helpers are importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from havona.api import create_app
from havona.store import BlobStore

from helpers import CHAIN_ID, OPERATOR, STORE_ADDRESS, FixedClock


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(clock):
    return BlobStore(operator=OPERATOR, chain_id=CHAIN_ID, address=STORE_ADDRESS, clock=clock)


@pytest.fixture
def client(store):
    return TestClient(create_app(store))
