"""Database models / type definitions.

These mirror the Supabase tables for type safety in Python code.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class PromptRow(BaseModel):
    """Row from the prompts table."""

    id: str
    user_id: str
    content: str
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime


class TagRow(BaseModel):
    """Row from the tags table."""

    id: str
    user_id: str
    name: str
    created_at: datetime | None = None


class PromptTagRow(BaseModel):
    """Row from the prompt_tags join table."""

    prompt_id: str
    tag_id: str
    user_id: str
    created_at: datetime | None = None


class PromptImageRow(BaseModel):
    """Row from the prompt_images table."""

    id: str
    prompt_id: str
    user_id: str
    path: str
    image_url: str
    created_at: datetime | None = None
