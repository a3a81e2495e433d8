"""Request-scoped dependencies — session resolution and per-session services."""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from prompt_vault.config import Settings, get_settings
from prompt_vault.core.cache import QueryCache, get_query_cache
from prompt_vault.core.errors import RemoteError
from prompt_vault.core.feed import FeedQuery
from prompt_vault.core.library import PromptLibrary
from prompt_vault.core.session import Session
from prompt_vault.core.throttle import Cooldown, get_cooldown
from prompt_vault.db.client import SupabaseClient, get_supabase_client
from prompt_vault.utils.logging import bind_user

bearer = HTTPBearer(auto_error=False)


async def get_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: SupabaseClient = Depends(get_supabase_client),
) -> Session:
    """Resolve the bearer token to the signed-in user via the hosted auth service."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        user_id = await run_in_threadpool(db.get_user_id, credentials.credentials)
    except RemoteError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    # Bound in the request task so async handlers and their log lines see it
    bind_user(user_id)
    return Session(user_id=user_id, access_token=credentials.credentials)


def get_library(
    session: Session = Depends(get_session),
    db: SupabaseClient = Depends(get_supabase_client),
    cache: QueryCache = Depends(get_query_cache),
    cooldown: Cooldown = Depends(get_cooldown),
    settings: Settings = Depends(get_settings),
) -> PromptLibrary:
    return PromptLibrary(db, session, cache, cooldown, settings)


def get_feed_query(
    session: Session = Depends(get_session),
    db: SupabaseClient = Depends(get_supabase_client),
    cache: QueryCache = Depends(get_query_cache),
    settings: Settings = Depends(get_settings),
) -> FeedQuery:
    return FeedQuery(db, session, cache, page_size=settings.page_size)
