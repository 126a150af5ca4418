import asyncio
import os

# Settings are read at import time; point everything at the in-process store first.
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("JWT_SECRET", "test_secret_for_restaurant_ops_that_is_long_enough")
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from restaurant_ops.main import app
from restaurant_ops.store import close_store


@pytest.fixture
def client():
    asyncio.run(close_store())
    with TestClient(app) as c:
        yield c
    asyncio.run(close_store())
