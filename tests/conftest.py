"""
Shared test fixtures and utilities.
"""
import os
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ["JWT_SECRET"] = "test-secret"

from src.core import config
from src.models.upload_session import Platform, ResumableUploadHandle, SessionStatus, UploadSession
from src.repositories.memory_session_repository import InMemorySessionRepository
from src.services.chunk_planner import plan
from src.services.credential_provider import CredentialProvider
from src.services.retry_executor import RetryExecutor

JWT_SECRET = "test-secret"


def make_token(owner_id: str = "test_user", expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": owner_id, "exp": now + expires_in, "iat": now}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


class StaticCredentialProvider(CredentialProvider):
    """Hands out fixed tokens; owners without an entry have no credential."""

    def __init__(self, tokens=None):
        self.tokens = dict(tokens or {})

    def get_valid_credential(self, owner_id, platform):
        return self.tokens.get((owner_id, Platform(platform)))

    def revoke(self, owner_id, platform):
        self.tokens.pop((owner_id, Platform(platform)), None)


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns at once and remembers each delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class ScriptedTransport:
    """
    Route table for httpx.MockTransport.

    Each route is (method, url prefix) -> list of responses, consumed in order;
    the last response repeats once the list runs out.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, url, *responses):
        self.routes.setdefault((method, url), []).extend(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        matches = [
            (prefix, responses) for (method, prefix), responses in self.routes.items()
            if request.method == method and url.startswith(prefix)
        ]
        if not matches:
            return httpx.Response(404, json={"error": f"no route for {request.method} {url}"})

        # Longest prefix wins, so /media and /media_publish can coexist
        _, responses = max(matches, key=lambda match: len(match[0]))
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def calls(self, method, url):
        return [r for r in self.requests if r.method == method and str(r.url).startswith(url)]


@pytest.fixture
def settings_env(monkeypatch):
    """Small chunks and fast retries so tests move real bytes quickly."""
    monkeypatch.setenv("CHUNK_SIZE_BYTES", "256")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("RETRY_BASE_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("INSTAGRAM_BUSINESS_ACCOUNT_ID", "ig-account")
    original = config.settings
    config.settings = config.Settings()
    yield config.settings
    config.settings = original


@pytest.fixture
def session_repository(settings_env):
    return InMemorySessionRepository(ttl_seconds=3600)


@pytest.fixture
def credentials():
    return StaticCredentialProvider({
        ("owner-1", platform): f"token-{platform.value}" for platform in Platform
    })


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def retry_executor(recording_sleep):
    return RetryExecutor(max_attempts=3, base_delay=0.5, sleep=recording_sleep)


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest_asyncio.fixture
async def http_client(transport):
    async with httpx.AsyncClient(transport=httpx.MockTransport(transport)) as client:
        yield client


def make_session(session_id="session-1", owner_id="owner-1", platform=Platform.YOUTUBE,
                 total_size=600, chunk_size=256, status=SessionStatus.INITIALIZED,
                 created_at=None, last_activity_at=None, remote_handle=None):
    created_at = created_at or datetime.now(timezone.utc)
    return UploadSession(
        session_id=session_id,
        owner_id=owner_id,
        platform=platform,
        file_name="clip.mp4",
        total_size=total_size,
        chunk_size=chunk_size,
        chunks=plan(total_size, chunk_size),
        status=status,
        created_at=created_at,
        last_activity_at=last_activity_at or created_at,
        remote_handle=remote_handle or ResumableUploadHandle(upload_url="https://upload.example/session-1")
    )


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def token_factory():
    return make_token
