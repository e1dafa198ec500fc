"""Pytest fixtures for testing"""

import json
from typing import Any, AsyncGenerator, Callable, Dict, List

import httpx
import pytest

from mock_backend.policy_server.main import BackendState, create_app
from policy_portal.domain.models import UserProfile
from policy_portal.infrastructure.auth.session_manager import SessionManager
from policy_portal.infrastructure.clients.http import HttpClient
from policy_portal.infrastructure.storage.credential_store import CredentialStore
from policy_portal.infrastructure.storage.session import create_session_factory, create_storage_engine
from policy_portal.portal import PortalClient

BASE_URL = "http://backend.test"


def envelope(access_token: str, refresh_token: str, email: str = "ivan@example.com") -> Dict[str, Any]:
    """Token envelope as returned by login/register/refresh"""
    return {
        "accessToken": access_token,
        "refreshToken": refresh_token,
        "email": email,
        "firstName": "Ivan",
        "lastName": "Petrov",
        "role": "USER",
        "level": "BRONZE",
        "policyCount": 5,
    }


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(
        email="ivan@example.com",
        first_name="Ivan",
        last_name="Petrov",
        role="USER",
        level="BRONZE",
        policy_count=5,
    )


@pytest.fixture
def session_factory():
    """In-memory storage shared by every store built from it"""
    engine = create_storage_engine("sqlite://")
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture
def logged_in_store(store: CredentialStore, profile: UserProfile) -> CredentialStore:
    store.save("old-access", "old-refresh", profile)
    return store


@pytest.fixture
def redirects() -> List[str]:
    """Collects session-expired navigation signals"""
    return []


@pytest.fixture
async def make_session(redirects: List[str]) -> AsyncGenerator[Callable[..., SessionManager], None]:
    """Build a SessionManager over a scripted backend"""
    clients: List[HttpClient] = []

    def factory(store: CredentialStore, handler: Callable, **kwargs: Any) -> SessionManager:
        http = HttpClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        clients.append(http)
        manager = SessionManager(store, http, **kwargs)
        manager.on_session_expired(redirects.append)
        return manager

    yield factory
    for http in clients:
        await http.aclose()


@pytest.fixture
def backend_state() -> BackendState:
    return BackendState()


@pytest.fixture
async def portal(backend_state: BackendState, redirects: List[str]) -> AsyncGenerator[PortalClient, None]:
    """Portal client wired to the in-process mock backend"""
    client = PortalClient(
        base_url=BASE_URL,
        storage_url="sqlite://",
        transport=httpx.ASGITransport(app=create_app(backend_state)),
        on_session_expired=redirects.append,
    )
    yield client
    await client.aclose()
