"""Signed-URL resolution for private image objects."""

from __future__ import annotations

import re
from functools import lru_cache

import structlog

from prompt_vault.config import get_settings
from prompt_vault.core.errors import RemoteError
from prompt_vault.db.client import SupabaseClient, get_supabase_client

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 60 * 60
_PASS_THROUGH = re.compile(r"^(https?://|blob:|data:)", re.IGNORECASE)


def is_absolute_reference(reference: str) -> bool:
    """True for references a browser can display without signing."""
    return bool(_PASS_THROUGH.match(reference))


def is_owned_key(reference: str, owner: str) -> bool:
    """True when ``reference`` is a plain storage key inside ``owner``'s folder.

    Empty, ``.`` and ``..`` segments and backslashes are rejected, so a key
    like ``owner/../other/x.jpg`` never reaches the signer.
    """
    segments = reference.split("/")
    if len(segments) < 2 or segments[0] != owner:
        return False
    return all(s not in ("", ".", "..") and "\\" not in s for s in segments)


class SignedUrlResolver:
    """Turns stored object paths into time-limited viewable URLs.

    Results are not cached: each caller resolves its own
    reference, so a re-render may sign the same object again.
    """

    def __init__(
        self, db: SupabaseClient, bucket: str, ttl_seconds: int = DEFAULT_TTL_SECONDS
    ) -> None:
        self.db = db
        self.bucket = bucket
        self.ttl_seconds = ttl_seconds

    def resolve(self, reference: str | None) -> str | None:
        """Return a displayable URL for ``reference``, or None when signing fails."""
        if not reference:
            return None
        if is_absolute_reference(reference):
            return reference
        try:
            return self.db.create_signed_url(self.bucket, reference, self.ttl_seconds)
        except RemoteError as e:
            logger.warning("signing.failed", path=reference, error=str(e))
            return None


@lru_cache
def get_resolver() -> SignedUrlResolver:
    """Get cached resolver instance."""
    settings = get_settings()
    return SignedUrlResolver(get_supabase_client(), settings.storage_bucket, settings.signed_url_ttl)
