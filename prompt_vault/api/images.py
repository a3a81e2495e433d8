"""Image endpoints — removal and signed-URL resolution."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from prompt_vault.api.deps import get_library, get_session
from prompt_vault.api.errors import http_error
from prompt_vault.api.models import SignedUrlResponse
from prompt_vault.core.errors import VaultError
from prompt_vault.core.library import PromptLibrary
from prompt_vault.core.session import Session
from prompt_vault.core.signing import (
    SignedUrlResolver,
    get_resolver,
    is_absolute_reference,
    is_owned_key,
)

router = APIRouter()


@router.get("/signed", response_model=SignedUrlResponse)
async def sign_image(
    ref: str = Query(..., min_length=1),
    session: Session = Depends(get_session),
    resolver: SignedUrlResolver = Depends(get_resolver),
) -> SignedUrlResponse:
    """Resolve an image reference to a displayable URL (null when signing fails)."""
    if not is_absolute_reference(ref) and not is_owned_key(ref, session.user_id):
        raise HTTPException(status_code=404, detail="Image not found")
    return SignedUrlResponse(reference=ref, url=resolver.resolve(ref))


@router.delete("/{image_id}", status_code=204)
async def remove_image(
    image_id: str,
    library: PromptLibrary = Depends(get_library),
) -> None:
    try:
        library.remove_image(image_id)
    except VaultError as e:
        raise http_error(e) from e
