"""Tag endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from prompt_vault.api.deps import get_library
from prompt_vault.api.errors import http_error
from prompt_vault.api.models import TagResponse, TagWrite
from prompt_vault.core.errors import VaultError
from prompt_vault.core.library import PromptLibrary

router = APIRouter()


@router.get("", response_model=list[TagResponse])
async def list_tags(library: PromptLibrary = Depends(get_library)) -> list[TagResponse]:
    """List the user's tags, ordered by name."""
    try:
        return [TagResponse.from_row(t) for t in library.list_tags()]
    except VaultError as e:
        raise http_error(e) from e


@router.post("", response_model=TagResponse, status_code=201)
async def create_tag(data: TagWrite, library: PromptLibrary = Depends(get_library)) -> TagResponse:
    try:
        return TagResponse.from_row(library.create_tag(data.name))
    except VaultError as e:
        raise http_error(e) from e


@router.put("/{tag_id}", response_model=TagResponse)
async def rename_tag(
    tag_id: str, data: TagWrite, library: PromptLibrary = Depends(get_library)
) -> TagResponse:
    try:
        return TagResponse.from_row(library.rename_tag(tag_id, data.name))
    except VaultError as e:
        raise http_error(e) from e


@router.delete("/{tag_id}", status_code=204)
async def delete_tag(tag_id: str, library: PromptLibrary = Depends(get_library)) -> None:
    """Delete a tag and unlink it from every prompt."""
    try:
        library.delete_tag(tag_id)
    except VaultError as e:
        raise http_error(e) from e
