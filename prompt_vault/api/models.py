"""Pydantic request/response models for the API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from prompt_vault.core.feed import FeedItem
from prompt_vault.core.library import PromptDetail
from prompt_vault.db.models import PromptImageRow, TagRow


# --- Prompts ---


class PromptUpdate(BaseModel):
    """Update a prompt. Omitted fields are left alone; ``tag_ids`` replaces the whole set."""

    content: str | None = Field(default=None, min_length=1)
    tag_ids: list[str] | None = None
    clear_image: bool = False


class PromptResponse(BaseModel):
    """Prompt response."""

    id: str
    user_id: str
    content: str
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: FeedItem) -> PromptResponse:
        return cls(**item.prompt.model_dump(), tags=item.tag_names)


class TagResponse(BaseModel):
    id: str
    name: str

    @classmethod
    def from_row(cls, row: TagRow) -> TagResponse:
        return cls(id=row.id, name=row.name)


class ImageResponse(BaseModel):
    id: str
    prompt_id: str
    path: str
    image_url: str

    @classmethod
    def from_row(cls, row: PromptImageRow) -> ImageResponse:
        return cls(id=row.id, prompt_id=row.prompt_id, path=row.path, image_url=row.image_url)


class PromptDetailResponse(BaseModel):
    """A prompt with its tags and images, as shown in the edit view."""

    id: str
    user_id: str
    content: str
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime
    tags: list[TagResponse]
    images: list[ImageResponse]

    @classmethod
    def from_detail(cls, detail: PromptDetail) -> PromptDetailResponse:
        return cls(
            **detail.prompt.model_dump(),
            tags=[TagResponse.from_row(t) for t in detail.tags],
            images=[ImageResponse.from_row(i) for i in detail.images],
        )


# --- Feed ---


class FeedResponse(BaseModel):
    items: list[PromptResponse]
    page: int
    has_more: bool


# --- Tags ---


class TagWrite(BaseModel):
    """Create or rename a tag."""

    name: str = Field(..., min_length=1, max_length=100)


# --- Images ---


class SignedUrlResponse(BaseModel):
    reference: str
    url: str | None
