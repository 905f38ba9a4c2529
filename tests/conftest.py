import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any package import reads settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "8")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scrob.app import create_app  # noqa: E402
from scrob.config import Settings, reset_settings_cache  # noqa: E402
from scrob.service.auth import AuthService  # noqa: E402
from scrob.service.passwords import PasswordCodec  # noqa: E402
from scrob.service.runtime import Runtime  # noqa: E402
from scrob.storage.memory import MemoryStore  # noqa: E402

PASSWORD = "Password123"


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    return Settings(
        use_memory_store=True,
        test_mode=True,
        password_hash_time_cost=1,
        password_hash_memory_cost=8,
        password_hash_parallelism=1,
    )


@pytest.fixture
def passwords(settings):
    return PasswordCodec.from_settings(settings)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def auth_service(memory_store, passwords):
    return AuthService(memory_store, passwords)


@pytest.fixture
def runtime(settings, memory_store, passwords):
    return Runtime(settings, store=memory_store, passwords=passwords)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def signup_user(client):
    """Sign a user up through the API and return their session token."""

    def _signup(username: str, password: str = PASSWORD) -> str:
        response = client.post(
            "/v1/auth/signup", json={"username": username, "password": password}
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]["token"]

    return _signup


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
