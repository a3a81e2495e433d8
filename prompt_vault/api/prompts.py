"""Prompt CRUD endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from prompt_vault.api.deps import get_library
from prompt_vault.api.errors import http_error
from prompt_vault.api.models import (
    ImageResponse,
    PromptDetailResponse,
    PromptResponse,
    PromptUpdate,
)
from prompt_vault.core.errors import VaultError
from prompt_vault.core.imaging import ImageUpload
from prompt_vault.core.library import PromptLibrary

router = APIRouter()


async def _read_upload(file: UploadFile) -> ImageUpload:
    return ImageUpload(
        filename=file.filename or "image",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )


@router.post("", response_model=PromptResponse, status_code=201)
async def create_prompt(
    content: str = Form(...),
    tag_ids: list[str] = Form(default=[]),
    images: list[UploadFile] = File(default=[]),
    library: PromptLibrary = Depends(get_library),
) -> PromptResponse:
    """Create a prompt with optional images and tags."""
    uploads = [await _read_upload(f) for f in images]
    try:
        prompt = library.create_prompt(content, images=uploads, tag_ids=tag_ids)
        detail = library.describe_prompt(prompt.id)
    except VaultError as e:
        raise http_error(e) from e
    return PromptResponse(**prompt.model_dump(), tags=[t.name for t in detail.tags])


@router.get("/{prompt_id}", response_model=PromptDetailResponse)
async def get_prompt(
    prompt_id: str,
    library: PromptLibrary = Depends(get_library),
) -> PromptDetailResponse:
    """Get a prompt with its tags and images."""
    try:
        return PromptDetailResponse.from_detail(library.describe_prompt(prompt_id))
    except VaultError as e:
        raise http_error(e) from e


@router.put("/{prompt_id}", response_model=PromptDetailResponse)
async def update_prompt(
    prompt_id: str,
    data: PromptUpdate,
    library: PromptLibrary = Depends(get_library),
) -> PromptDetailResponse:
    """Update content, replace the tag set, or clear the image."""
    try:
        library.update_prompt(
            prompt_id,
            content=data.content,
            tag_ids=data.tag_ids,
            clear_image=data.clear_image,
        )
        return PromptDetailResponse.from_detail(library.describe_prompt(prompt_id))
    except VaultError as e:
        raise http_error(e) from e


@router.delete("/{prompt_id}", status_code=204)
async def delete_prompt(
    prompt_id: str,
    library: PromptLibrary = Depends(get_library),
) -> None:
    """Delete a prompt together with its images and tag links."""
    try:
        library.delete_prompt(prompt_id)
    except VaultError as e:
        raise http_error(e) from e


@router.get("/{prompt_id}/images", response_model=list[ImageResponse])
async def list_images(
    prompt_id: str,
    library: PromptLibrary = Depends(get_library),
) -> list[ImageResponse]:
    try:
        library.get_prompt(prompt_id)
        return [ImageResponse.from_row(r) for r in library.list_images(prompt_id)]
    except VaultError as e:
        raise http_error(e) from e


@router.post("/{prompt_id}/images", response_model=ImageResponse, status_code=201)
async def add_image(
    prompt_id: str,
    image: UploadFile = File(...),
    library: PromptLibrary = Depends(get_library),
) -> ImageResponse:
    """Attach a new primary image; the prompt's older images are removed."""
    upload = await _read_upload(image)
    try:
        return ImageResponse.from_row(library.add_image(prompt_id, upload))
    except VaultError as e:
        raise http_error(e) from e
