"""Test fixtures — mock Supabase client and shared test data."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from prompt_vault.config import Settings
from prompt_vault.core.cache import QueryCache
from prompt_vault.core.errors import RemoteError
from prompt_vault.core.imaging import ImageUpload
from prompt_vault.core.library import PromptLibrary
from prompt_vault.core.session import Session
from prompt_vault.core.throttle import Cooldown
from prompt_vault.db.client import SupabaseClient

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class MockSupabaseClient(SupabaseClient):
    """In-memory mock of the Supabase client for testing.

    ``fail_on`` holds operation names (``"insert prompt_tags"``, ``"upload"``,
    ``"remove"``, ``"sign"``...) that raise ``RemoteError`` when called.
    ``fail_after`` maps an operation name to how many more calls succeed before
    it starts failing. Every call is recorded in ``calls``.
    """

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {
            "prompts": [],
            "tags": [],
            "prompt_tags": [],
            "prompt_images": [],
        }
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.tokens: dict[str, str] = {}
        self.fail_on: set[str] = set()
        self.fail_after: dict[str, int] = {}
        self.object_created: dict[str, str] = {}
        self.calls: list[tuple[Any, ...]] = []
        self._tick = 0

    def _stamp(self) -> str:
        # Strictly increasing timestamps keep ordering deterministic
        self._tick += 1
        return (BASE_TIME + timedelta(seconds=self._tick)).isoformat()

    def _check(self, operation: str) -> None:
        if operation in self.fail_after:
            if self.fail_after[operation] <= 0:
                raise RemoteError(operation, "injected failure")
            self.fail_after[operation] -= 1
        if operation in self.fail_on:
            raise RemoteError(operation, "injected failure")

    @staticmethod
    def _match(
        rows: Iterable[dict[str, Any]],
        filters: dict[str, Any] | None,
        in_filters: dict[str, Iterable[Any]] | None = None,
    ) -> list[dict[str, Any]]:
        rows = list(rows)
        for key, value in (filters or {}).items():
            rows = [r for r in rows if r.get(key) == value]
        for key, values in (in_filters or {}).items():
            allowed = set(values)
            rows = [r for r in rows if r.get(key) in allowed]
        return rows

    def _project(self, table: str, row: dict[str, Any], columns: str) -> dict[str, Any]:
        if columns.strip() == "*":
            return dict(row)
        out: dict[str, Any] = {}
        for column in (c.strip() for c in columns.split(",")):
            if column == "tags(name)" and table == "prompt_tags":
                tag = next((t for t in self._tables["tags"] if t["id"] == row["tag_id"]), None)
                out["tags"] = {"name": tag["name"]} if tag else None
            else:
                out[column] = row.get(column)
        return out

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        in_filters: dict[str, Iterable[Any]] | None = None,
        not_null: Sequence[str] = (),
        order: Sequence[tuple[str, bool]] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table))
        self._check(f"select {table}")
        rows = self._match(self._tables.get(table, []), filters, in_filters)
        rows = [r for r in rows if all(r.get(k) is not None for k in not_null)]
        for column, ascending in reversed(list(order)):
            rows = sorted(rows, key=lambda r: r.get(column) or "", reverse=not ascending)
        # Like PostgREST max-rows, no response holds more than MAX_ROWS rows
        start = offset or 0
        cap = self.MAX_ROWS if limit is None else min(limit, self.MAX_ROWS)
        rows = rows[start : start + cap]
        return [self._project(table, r, columns) for r in rows]

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        return self.insert_many(table, [data])[0]

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.calls.append(("insert", table))
        self._check(f"insert {table}")
        created = []
        for data in rows:
            stamp = self._stamp()
            record = {"created_at": stamp, **data}
            if table != "prompt_tags":
                record.setdefault("id", str(uuid4()))
            if table == "prompts":
                record.setdefault("updated_at", record["created_at"])
            self._tables.setdefault(table, []).append(record)
            created.append(dict(record))
        return created

    def update(
        self, table: str, filters: dict[str, Any], data: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self.calls.append(("update", table))
        self._check(f"update {table}")
        updated = []
        for row in self._match(self._tables.get(table, []), filters):
            row.update(data)
            updated.append(dict(row))
        return updated

    def delete(
        self,
        table: str,
        filters: dict[str, Any],
        in_filters: dict[str, Iterable[Any]] | None = None,
    ) -> None:
        self.calls.append(("delete", table))
        self._check(f"delete {table}")
        doomed = {id(r) for r in self._match(self._tables.get(table, []), filters, in_filters)}
        self._tables[table] = [r for r in self._tables.get(table, []) if id(r) not in doomed]

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        self.calls.append(("upload", path))
        self._check("upload")
        if (bucket, path) in self.objects and not upsert:
            raise RemoteError(f"upload {path}", "The resource already exists")
        self.objects[(bucket, path)] = (data, content_type)

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        self.calls.append(("sign", path))
        self._check("sign")
        return f"https://storage.test/{bucket}/{path}?token=signed&expires={ttl_seconds}"

    def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        self.calls.append(("remove", tuple(paths)))
        self._check("remove")
        for path in paths:
            self.objects.pop((bucket, path), None)

    def list_objects(self, bucket: str, prefix: str = "") -> list[dict[str, Any]]:
        self.calls.append(("list", prefix))
        self._check("list")
        base = f"{prefix}/" if prefix else ""
        entries: dict[str, dict[str, Any]] = {}
        for b, path in sorted(self.objects):
            if b != bucket or not path.startswith(base):
                continue
            head, _, rest = path[len(base) :].partition("/")
            if rest:
                entries.setdefault(head, {"name": head, "id": None})
            else:
                created = self.object_created.get(path, BASE_TIME.isoformat())
                entries[head] = {"name": head, "id": f"obj-{path}", "created_at": created}
        return list(entries.values())

    def get_user_id(self, access_token: str) -> str:
        self._check("verify token")
        if access_token not in self.tokens:
            raise RemoteError("verify token", "invalid JWT")
        return self.tokens[access_token]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self._tables.get(table, [])

    def count(self, kind: str, target: Any) -> int:
        return sum(1 for c in self.calls if c[0] == kind and c[1] == target)


class FakeClock:
    """Manually advanced stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_image(size: tuple[int, int] = (1024, 768), mode: str = "RGB", fmt: str = "PNG") -> bytes:
    color = (200, 30, 30, 0) if mode == "RGBA" else (200, 30, 30)
    out = BytesIO()
    Image.new(mode, size, color).save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def mock_db() -> MockSupabaseClient:
    """Fresh mock database for each test."""
    return MockSupabaseClient()


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-1", access_token="token-1")


@pytest.fixture
def other_session() -> Session:
    return Session(user_id="user-2", access_token="token-2")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache()


@pytest.fixture
def cooldown(clock) -> Cooldown:
    return Cooldown(1.5, clock=clock)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        supabase_url="https://project.supabase.test",
        supabase_key="test-key",
        preferences_path=tmp_path / "preferences.json",
    )


@pytest.fixture
def library(mock_db, session, cache, cooldown, settings) -> PromptLibrary:
    return PromptLibrary(mock_db, session, cache, cooldown, settings)


@pytest.fixture
def png_upload() -> ImageUpload:
    """A 1024x768 PNG, larger than the compression bound."""
    return ImageUpload(filename="Photo One.png", content_type="image/png", data=make_image())


@pytest.fixture
def seed(mock_db, session):
    """Insert rows directly, bypassing the library. Seed before the first read."""

    class Seeder:
        def tag(self, name: str, user_id: str = session.user_id) -> str:
            return mock_db.insert("tags", {"user_id": user_id, "name": name})["id"]

        def prompt(
            self,
            content: str,
            tag_ids: Sequence[str] = (),
            image_url: str | None = None,
            user_id: str = session.user_id,
            **extra: Any,
        ) -> str:
            row = mock_db.insert(
                "prompts",
                {"user_id": user_id, "content": content, "image_url": image_url, **extra},
            )
            for tag_id in tag_ids:
                mock_db.insert(
                    "prompt_tags", {"prompt_id": row["id"], "tag_id": tag_id, "user_id": user_id}
                )
            return row["id"]

        def image(self, prompt_id: str, path: str, user_id: str = session.user_id) -> str:
            mock_db.objects[("prompt-images", path)] = (b"jpeg", "image/jpeg")
            return mock_db.insert(
                "prompt_images",
                {"prompt_id": prompt_id, "user_id": user_id, "path": path, "image_url": path},
            )["id"]

    return Seeder()


@pytest.fixture
def app(mock_db, session, cache, cooldown, settings):
    """FastAPI test app with mocked dependencies."""
    from prompt_vault.api.deps import get_session
    from prompt_vault.config import get_settings
    from prompt_vault.core.cache import get_query_cache
    from prompt_vault.core.signing import SignedUrlResolver, get_resolver
    from prompt_vault.core.throttle import get_cooldown
    from prompt_vault.db.client import get_supabase_client
    from prompt_vault.main import app as _app

    resolver = SignedUrlResolver(mock_db, settings.storage_bucket, settings.signed_url_ttl)

    _app.dependency_overrides[get_session] = lambda: session
    _app.dependency_overrides[get_supabase_client] = lambda: mock_db
    _app.dependency_overrides[get_query_cache] = lambda: cache
    _app.dependency_overrides[get_cooldown] = lambda: cooldown
    _app.dependency_overrides[get_settings] = lambda: settings
    _app.dependency_overrides[get_resolver] = lambda: resolver

    yield _app

    _app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    """HTTP test client."""
    return TestClient(app)
