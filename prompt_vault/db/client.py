"""Supabase client initialization and helper methods."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from functools import lru_cache
from typing import Any

import httpx
import structlog
from supabase import AuthError, Client, PostgrestAPIError, StorageException, create_client

from prompt_vault.config import get_settings
from prompt_vault.core.errors import RemoteError

logger = structlog.get_logger()

# (column, ascending) pairs, applied in order
Ordering = Sequence[tuple[str, bool]]

_DB_ERRORS = (PostgrestAPIError, httpx.HTTPError)
_STORAGE_ERRORS = (StorageException, httpx.HTTPError)


class SupabaseClient:
    """Wrapper around the Supabase client with convenience methods.

    Every failure reported by the SDK is re-raised as ``RemoteError`` so callers
    deal with a single error type for the hosted platform.
    """

    # PostgREST max-rows: an unranged select never returns more than this
    MAX_ROWS = 1000
    LIST_PAGE_SIZE = 100

    def __init__(self, client: Client) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    # --- Relational store ---

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        in_filters: dict[str, Iterable[Any]] | None = None,
        not_null: Sequence[str] = (),
        order: Ordering = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select records with optional filters, ordering and a row range."""
        query = self._client.table(table).select(columns)

        for key, value in (filters or {}).items():
            query = query.eq(key, value)
        for key, values in (in_filters or {}).items():
            query = query.in_(key, list(values))
        for key in not_null:
            query = query.not_.is_(key, "null")

        for column, ascending in order:
            query = query.order(column, desc=not ascending)

        if limit is not None and offset is not None:
            query = query.range(offset, offset + limit - 1)
        elif limit is not None:
            query = query.limit(limit)

        try:
            result = query.execute()
        except _DB_ERRORS as e:
            raise RemoteError(f"select {table}", str(e)) from e
        return result.data

    def select_all(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        in_filters: dict[str, Iterable[Any]] | None = None,
        not_null: Sequence[str] = (),
        order: Ordering = (),
    ) -> list[dict[str, Any]]:
        """Select every matching record, one ranged request per ``MAX_ROWS`` rows.

        ``order`` must be total (end on a unique column) or pages can overlap.
        """
        rows: list[dict[str, Any]] = []
        while True:
            page = self.select(
                table,
                columns,
                filters,
                in_filters,
                not_null,
                order,
                limit=self.MAX_ROWS,
                offset=len(rows),
            )
            rows.extend(page)
            if len(page) < self.MAX_ROWS:
                return rows

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return the created row."""
        return self.insert_many(table, [data])[0]

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert several records in one round trip."""
        if not rows:
            return []
        try:
            result = self._client.table(table).insert(rows).execute()
        except _DB_ERRORS as e:
            raise RemoteError(f"insert {table}", str(e)) from e
        return result.data

    def update(
        self, table: str, filters: dict[str, Any], data: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update every record matching ``filters``; returns the updated rows."""
        query = self._client.table(table).update(data)
        for key, value in filters.items():
            query = query.eq(key, value)
        try:
            result = query.execute()
        except _DB_ERRORS as e:
            raise RemoteError(f"update {table}", str(e)) from e
        return result.data

    def delete(
        self,
        table: str,
        filters: dict[str, Any],
        in_filters: dict[str, Iterable[Any]] | None = None,
    ) -> None:
        """Delete every record matching ``filters`` (and ``in_filters``)."""
        query = self._client.table(table).delete()
        for key, value in filters.items():
            query = query.eq(key, value)
        for key, values in (in_filters or {}).items():
            query = query.in_(key, list(values))
        try:
            query.execute()
        except _DB_ERRORS as e:
            raise RemoteError(f"delete {table}", str(e)) from e

    # --- Object storage ---

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        """Upload an object to a storage bucket."""
        try:
            self._client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": str(upsert).lower()},
            )
        except _STORAGE_ERRORS as e:
            raise RemoteError(f"upload {path}", str(e)) from e

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """Create a time-limited URL for a private object."""
        try:
            result = self._client.storage.from_(bucket).create_signed_url(path, ttl_seconds)
        except _STORAGE_ERRORS as e:
            raise RemoteError(f"sign {path}", str(e)) from e
        url = result.get("signedURL") or result.get("signedUrl")
        if not url:
            raise RemoteError(f"sign {path}", "no signed URL returned")
        return url

    def remove(self, bucket: str, paths: list[str]) -> None:
        """Remove objects from a storage bucket."""
        if not paths:
            return
        try:
            self._client.storage.from_(bucket).remove(paths)
        except _STORAGE_ERRORS as e:
            raise RemoteError(f"remove {len(paths)} objects", str(e)) from e

    def list_objects(self, bucket: str, prefix: str = "") -> list[dict[str, Any]]:
        """List the entries directly under ``prefix``. Folder entries have no ``id``."""
        storage = self._client.storage.from_(bucket)
        entries: list[dict[str, Any]] = []
        while True:
            options = {
                "limit": self.LIST_PAGE_SIZE,
                "offset": len(entries),
                "sortBy": {"column": "name", "order": "asc"},
            }
            try:
                page = storage.list(prefix, options)
            except _STORAGE_ERRORS as e:
                raise RemoteError(f"list {prefix or '/'}", str(e)) from e
            entries.extend(page)
            if len(page) < self.LIST_PAGE_SIZE:
                return entries

    # --- Auth ---

    def get_user_id(self, access_token: str) -> str:
        """Verify an access token with the hosted auth service."""
        try:
            response = self._client.auth.get_user(access_token)
        except (AuthError, httpx.HTTPError) as e:
            raise RemoteError("verify token", str(e)) from e
        if response is None or response.user is None:
            raise RemoteError("verify token", "no user for token")
        return response.user.id


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get cached Supabase client instance."""
    settings = get_settings()
    if not settings.supabase_configured:
        logger.warning("supabase.not_configured")
    client = create_client(settings.supabase_url, settings.supabase_key)
    logger.info("supabase.connected", url=settings.supabase_url)
    return SupabaseClient(client)
