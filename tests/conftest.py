import os

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException, Request

os.environ.setdefault("SUPABASE_JWT_SECRET", "test-secret")
os.environ.setdefault("AI_EXTRACT_PROVIDER", "mock")
os.environ.setdefault("AI_CHAT_PROVIDER", "mock")

from profit_iq.core.auth import CurrentUser, get_current_user  # noqa: E402
from profit_iq.core.config import get_settings  # noqa: E402
from profit_iq.core.dependencies import Database, get_blob_storage, get_db  # noqa: E402
from profit_iq.core.errors import FetchFailure  # noqa: E402
from profit_iq.core.storage import BlobStorage  # noqa: E402
from profit_iq.main import app  # noqa: E402
from profit_iq.utils.alerting import alert_tracker  # noqa: E402
from profit_iq.utils.rate_limit import rate_limiter  # noqa: E402

OWNER_ID = "00000000-0000-0000-0000-000000000001"
OTHER_OWNER_ID = "00000000-0000-0000-0000-000000000002"
STORAGE_URL = "https://storage.test"


@pytest.fixture(autouse=True)
def _reset_process_state():
    # Tests mutate env vars and hit module-level limiters; don't leak either across tests.
    get_settings.cache_clear()
    rate_limiter.reset()
    alert_tracker.reset()
    yield
    get_settings.cache_clear()
    rate_limiter.reset()
    alert_tracker.reset()


class FakeBucket:
    """Stands in for the supabase storage bucket client."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_remove = False

    def upload(self, path, content, options=None):
        self.objects[path] = content
        return {"Key": path}

    def remove(self, paths):
        if self.fail_remove:
            raise RuntimeError("storage unavailable")
        for path in paths:
            self.objects.pop(path, None)
        return []

    def create_signed_url(self, path, expires_in):
        return {"signedURL": f"/object/sign/profit-iq/{path}?token=test-token&expires={expires_in}"}


class InMemoryBlobStorage(BlobStorage):
    def __init__(self):
        super().__init__(url=STORAGE_URL, key="service-key", bucket="profit-iq")
        self.bucket = FakeBucket()

    def _storage(self):
        return self.bucket

    async def fetch(self, url: str) -> bytes:
        path = self._path_from_url(url)
        if path is None or path not in self.bucket.objects:
            raise FetchFailure("Failed to fetch document content")
        return self.bucket.objects[path]


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def db_session(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage():
    return InMemoryBlobStorage()


def _test_get_current_user(request: Request) -> CurrentUser:
    """Resolve the caller from X-Test-* headers instead of a bearer token."""
    sub = request.headers.get("x-test-sub")
    if not sub:
        raise HTTPException(401, "Unauthorized")
    return CurrentUser(id=sub, email=request.headers.get("x-test-email", "tests@example.com"))


@pytest.fixture
def app_overrides(database, storage):
    def override_get_db():
        db = database.session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = _test_get_current_user
    app.dependency_overrides[get_blob_storage] = lambda: storage
    yield app
    app.dependency_overrides.clear()


def _make_asgi_client(headers: dict) -> httpx.AsyncClient:
    """Create an in-process ASGI client (no uvicorn, no lifespan)."""
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test", headers=headers)


@pytest_asyncio.fixture
async def client(app_overrides):
    async with _make_asgi_client({"X-Test-Sub": OWNER_ID}) as c:
        yield c


@pytest_asyncio.fixture
async def other_client(app_overrides):
    """Client authenticated as a different owner (for isolation tests)."""
    async with _make_asgi_client({"X-Test-Sub": OTHER_OWNER_ID}) as c:
        yield c


@pytest_asyncio.fixture
async def anonymous_client(app_overrides):
    async with _make_asgi_client({}) as c:
        yield c
