"""Prompt Library — mutations and reads for prompts, tags and images.

Every write is a sequence of independent remote calls. Nothing is rolled back:
when a later step fails after an earlier one committed, ``PartialApplyError``
names the failed step and the committed ones. Once the first remote write has
been attempted, every cached view it could affect is invalidated, whether the
write finished or stopped part-way.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog

from prompt_vault.config import Settings, get_settings
from prompt_vault.core import imaging
from prompt_vault.core.cache import QueryCache
from prompt_vault.core.errors import (
    DuplicateTagError,
    NotFoundError,
    PartialApplyError,
    RemoteError,
    ValidationError,
)
from prompt_vault.core.imaging import ImageUpload
from prompt_vault.core.session import Session
from prompt_vault.core.signing import is_absolute_reference
from prompt_vault.core.tagging import TagIndex
from prompt_vault.core.throttle import Cooldown
from prompt_vault.db.client import SupabaseClient
from prompt_vault.db.models import PromptImageRow, PromptRow, TagRow

logger = structlog.get_logger()

T = TypeVar("T")

# Cooldown scopes; all tag mutations share one window
DELETE_PROMPT_ACTION = "prompt.delete"
TAG_ACTION = "tags"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class _Steps:
    """Runs the remote calls of one mutation and tracks which ones committed."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.completed: list[str] = []

    def run(self, name: str, fn: Callable[..., T], *args: Any, writes: bool = True) -> T:
        try:
            result = fn(*args)
        except RemoteError as e:
            if self.completed:
                logger.error(
                    "library.partial_apply",
                    operation=self.operation,
                    step=name,
                    completed=self.completed,
                    error=str(e),
                )
                raise PartialApplyError(name, self.completed, e) from e
            raise
        if writes:
            self.completed.append(name)
        return result


@dataclass
class CascadeResult:
    prompt_id: str
    removed_objects: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)


class CascadeDelete:
    """Deletes a prompt and everything that hangs off it, one step at a time.

    Steps, in order:

    1. ``load_images``: read the prompt's image rows.
    2. ``remove_objects``: remove the stored objects (image rows plus a legacy
       primary path that has no row).
    3. ``delete_image_rows``: delete the ``prompt_images`` rows.
    4. ``delete_tag_links``: delete the ``prompt_tags`` rows.
    5. ``delete_prompt``: delete the prompt row itself.

    A failure at step N leaves steps 1..N-1 applied. Objects or rows left
    behind are reconciled later by ``maintenance.sweep_orphans``.
    """

    STEPS = ("load_images", "remove_objects", "delete_image_rows", "delete_tag_links", "delete_prompt")

    def __init__(self, db: SupabaseClient, session: Session, bucket: str) -> None:
        self.db = db
        self.session = session
        self.bucket = bucket

    def run(self, prompt: PromptRow) -> CascadeResult:
        owner = self.session.owner_filter()
        steps = _Steps("delete_prompt")
        result = CascadeResult(prompt_id=prompt.id)

        images = steps.run(
            "load_images",
            self.db.select,
            "prompt_images",
            "*",
            {**owner, "prompt_id": prompt.id},
            writes=False,
        )
        paths = _unique(img["path"] for img in images)
        if prompt.image_url and not is_absolute_reference(prompt.image_url):
            paths = _unique([*paths, prompt.image_url])

        if paths:
            steps.run("remove_objects", self.db.remove, self.bucket, paths)
            result.removed_objects = paths
        if images:
            steps.run(
                "delete_image_rows",
                self.db.delete,
                "prompt_images",
                {**owner, "prompt_id": prompt.id},
            )
        steps.run("delete_tag_links", self.db.delete, "prompt_tags", {**owner, "prompt_id": prompt.id})
        steps.run("delete_prompt", self.db.delete, "prompts", {**owner, "id": prompt.id})

        result.steps = steps.completed
        return result


@dataclass
class PromptDetail:
    prompt: PromptRow
    tags: list[TagRow]
    images: list[PromptImageRow]


class PromptLibrary:
    """Owner-scoped prompt, tag and image operations for one session."""

    def __init__(
        self,
        db: SupabaseClient,
        session: Session,
        cache: QueryCache,
        cooldown: Cooldown,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.session = session
        self.cache = cache
        self.cooldown = cooldown
        self.settings = settings or get_settings()

    @property
    def bucket(self) -> str:
        return self.settings.storage_bucket

    def _owner(self, **extra: Any) -> dict[str, Any]:
        return {**self.session.owner_filter(), **extra}

    def _throttle(self, action: str) -> None:
        self.cooldown.acquire(f"{self.session.user_id}:{action}")

    # --- Cache ---

    def _invalidate_prompts(self) -> None:
        uid = self.session.user_id
        for scope in ("feed", "prompt", "prompt-tags", "prompt-images"):
            self.cache.invalidate(scope, uid)

    def _invalidate_tags(self) -> None:
        uid = self.session.user_id
        for scope in ("tags", "feed", "prompt-tags"):
            self.cache.invalidate(scope, uid)

    # --- Reads ---

    def get_prompt(self, prompt_id: str) -> PromptRow:
        """Get a prompt by id or raise ``NotFoundError``."""

        def fetch() -> dict[str, Any] | None:
            rows = self.db.select("prompts", filters=self._owner(id=prompt_id), limit=1)
            return rows[0] if rows else None

        row = self.cache.get_or_fetch(("prompt", self.session.user_id, prompt_id), fetch)
        if row is None:
            raise NotFoundError(f"Prompt '{prompt_id}' not found")
        return PromptRow(**row)

    def list_tags(self) -> list[TagRow]:
        rows = self.cache.get_or_fetch(
            ("tags", self.session.user_id),
            lambda: self.db.select_all("tags", filters=self._owner(), order=[("name", True), ("id", True)]),
        )
        return [TagRow(**r) for r in rows]

    def prompt_tag_ids(self, prompt_id: str) -> list[str]:
        rows = self.cache.get_or_fetch(
            ("prompt-tags", self.session.user_id, prompt_id),
            lambda: self.db.select(
                "prompt_tags", columns="tag_id", filters=self._owner(prompt_id=prompt_id)
            ),
        )
        return [r["tag_id"] for r in rows]

    def list_images(self, prompt_id: str) -> list[PromptImageRow]:
        rows = self.cache.get_or_fetch(
            ("prompt-images", self.session.user_id, prompt_id),
            lambda: self.db.select(
                "prompt_images",
                filters=self._owner(prompt_id=prompt_id),
                order=[("created_at", True)],
            ),
        )
        return [PromptImageRow(**r) for r in rows]

    def tag_index(self) -> TagIndex:
        """Index over the owner's full tag set and full link set."""
        links = self.cache.get_or_fetch(
            ("prompt-tags", self.session.user_id, "*"),
            lambda: self.db.select_all(
                "prompt_tags",
                columns="prompt_id, tag_id",
                filters=self._owner(),
                order=[("prompt_id", True), ("tag_id", True)],
            ),
        )
        return TagIndex.from_rows([t.model_dump() for t in self.list_tags()], links)

    def describe_prompt(self, prompt_id: str) -> PromptDetail:
        prompt = self.get_prompt(prompt_id)
        linked = set(self.prompt_tag_ids(prompt_id))
        tags = [t for t in self.list_tags() if t.id in linked]
        return PromptDetail(prompt=prompt, tags=tags, images=self.list_images(prompt_id))

    # --- Validation ---

    def _check_content(self, content: str) -> None:
        if not content.strip():
            raise ValidationError("Prompt content must not be empty")

    def _prepare_images(self, images: Sequence[ImageUpload]) -> list[tuple[ImageUpload, bytes]]:
        """Validate and compress every upload before any network call."""
        for upload in images:
            imaging.validate(upload, max_bytes=self.settings.max_upload_bytes)
        return [
            (
                upload,
                imaging.compress(
                    upload.data,
                    max_dimension=self.settings.image_max_dimension,
                    quality=self.settings.image_quality,
                ),
            )
            for upload in images
        ]

    def _check_tag_ids(self, tag_ids: Sequence[str]) -> list[str]:
        tag_ids = _unique(tag_ids)
        known = {t.id for t in self.list_tags()}
        unknown = [t for t in tag_ids if t not in known]
        if unknown:
            raise ValidationError(f"Unknown tag id(s): {', '.join(unknown)}")
        return tag_ids

    def _check_tag_name(self, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValidationError("Tag name is required")
        return name

    # --- Image steps ---

    def _upload(self, steps: _Steps, upload: ImageUpload, data: bytes, now: datetime) -> str:
        path = imaging.build_storage_path(self.session.user_id, upload.filename, now)
        steps.run("upload_image", self.db.upload, self.bucket, path, data, imaging.OUTPUT_CONTENT_TYPE)
        return path

    def _image_row(self, prompt_id: str, path: str) -> dict[str, Any]:
        return {"prompt_id": prompt_id, "user_id": self.session.user_id, "path": path, "image_url": path}

    def _purge_images(
        self, steps: _Steps, rows: Sequence[PromptImageRow], legacy_path: str | None = None
    ) -> None:
        paths = _unique(r.path for r in rows)
        if legacy_path and not is_absolute_reference(legacy_path) and legacy_path not in paths:
            paths.append(legacy_path)
        if paths:
            steps.run("remove_old_objects", self.db.remove, self.bucket, paths)
        if rows:
            steps.run(
                "delete_old_image_rows",
                self.db.delete,
                "prompt_images",
                self._owner(),
                {"id": [r.id for r in rows]},
            )

    def _replace_primary(
        self, steps: _Steps, prompt: PromptRow, upload: ImageUpload, data: bytes
    ) -> PromptImageRow:
        existing = steps.run(
            "load_images",
            self.db.select,
            "prompt_images",
            "*",
            self._owner(prompt_id=prompt.id),
            writes=False,
        )
        path = self._upload(steps, upload, data, datetime.now(timezone.utc))
        row = steps.run(
            "insert_image_row", self.db.insert, "prompt_images", self._image_row(prompt.id, path)
        )
        steps.run(
            "set_primary_image",
            self.db.update,
            "prompts",
            self._owner(id=prompt.id),
            {"image_url": path, "updated_at": _now()},
        )
        self._purge_images(steps, [PromptImageRow(**r) for r in existing], prompt.image_url)
        return PromptImageRow(**row)

    # --- Prompt mutations ---

    def create_prompt(
        self,
        content: str,
        images: Sequence[ImageUpload] = (),
        tag_ids: Sequence[str] = (),
    ) -> PromptRow:
        """Create a prompt, upload its images and link its tags."""
        self._check_content(content)
        prepared = self._prepare_images(images)
        tag_ids = self._check_tag_ids(tag_ids) if tag_ids else []

        steps = _Steps("create_prompt")
        started = datetime.now(timezone.utc)
        try:
            # Offset each upload by a millisecond so same-named files get distinct keys
            paths = [
                self._upload(steps, upload, data, started + timedelta(milliseconds=i))
                for i, (upload, data) in enumerate(prepared)
            ]

            prompt = steps.run(
                "insert_prompt",
                self.db.insert,
                "prompts",
                {"user_id": self.session.user_id, "content": content, "image_url": paths[0] if paths else None},
            )
            if tag_ids:
                steps.run(
                    "insert_tag_links",
                    self.db.insert_many,
                    "prompt_tags",
                    [{"prompt_id": prompt["id"], "tag_id": t, "user_id": self.session.user_id} for t in tag_ids],
                )
            if paths:
                steps.run(
                    "insert_image_rows",
                    self.db.insert_many,
                    "prompt_images",
                    [self._image_row(prompt["id"], p) for p in paths],
                )
        finally:
            self._invalidate_prompts()

        logger.info("prompt.created", prompt_id=prompt["id"], images=len(paths), tags=len(tag_ids))
        return PromptRow(**prompt)

    def update_prompt(
        self,
        prompt_id: str,
        content: str | None = None,
        tag_ids: Sequence[str] | None = None,
        image: ImageUpload | None = None,
        clear_image: bool = False,
    ) -> PromptRow:
        """Patch content, replace the tag set wholesale, and replace or clear the image."""
        if image is not None and clear_image:
            raise ValidationError("Cannot replace and clear the image in the same update")
        if content is not None:
            self._check_content(content)
        prepared = self._prepare_images([image]) if image is not None else []
        if tag_ids is not None:
            tag_ids = self._check_tag_ids(tag_ids)
        prompt = self.get_prompt(prompt_id)

        steps = _Steps("update_prompt")
        try:
            if content is not None:
                steps.run(
                    "update_content",
                    self.db.update,
                    "prompts",
                    self._owner(id=prompt_id),
                    {"content": content, "updated_at": _now()},
                )

            if prepared:
                upload, data = prepared[0]
                self._replace_primary(steps, prompt, upload, data)
            elif clear_image:
                existing = steps.run(
                    "load_images",
                    self.db.select,
                    "prompt_images",
                    "*",
                    self._owner(prompt_id=prompt_id),
                    writes=False,
                )
                steps.run(
                    "clear_primary_image",
                    self.db.update,
                    "prompts",
                    self._owner(id=prompt_id),
                    {"image_url": None, "updated_at": _now()},
                )
                self._purge_images(steps, [PromptImageRow(**r) for r in existing], prompt.image_url)

            if tag_ids is not None:
                steps.run("delete_tag_links", self.db.delete, "prompt_tags", self._owner(prompt_id=prompt_id))
                if tag_ids:
                    steps.run(
                        "insert_tag_links",
                        self.db.insert_many,
                        "prompt_tags",
                        [{"prompt_id": prompt_id, "tag_id": t, "user_id": self.session.user_id} for t in tag_ids],
                    )
        finally:
            self._invalidate_prompts()

        logger.info("prompt.updated", prompt_id=prompt_id, steps=steps.completed)
        return self.get_prompt(prompt_id)

    def add_image(self, prompt_id: str, image: ImageUpload) -> PromptImageRow:
        """Attach a new primary image; older images of the prompt are purged."""
        upload, data = self._prepare_images([image])[0]
        prompt = self.get_prompt(prompt_id)

        steps = _Steps("add_image")
        try:
            row = self._replace_primary(steps, prompt, upload, data)
        finally:
            self._invalidate_prompts()

        logger.info("prompt.image_added", prompt_id=prompt_id, path=row.path)
        return row

    def remove_image(self, image_id: str) -> None:
        """Remove one image; the primary moves to a remaining image or is cleared."""
        rows = self.db.select("prompt_images", filters=self._owner(id=image_id), limit=1)
        if not rows:
            raise NotFoundError(f"Image '{image_id}' not found")
        image = PromptImageRow(**rows[0])
        prompt = self.get_prompt(image.prompt_id)

        steps = _Steps("remove_image")
        try:
            steps.run("remove_object", self.db.remove, self.bucket, [image.path])
            steps.run("delete_image_row", self.db.delete, "prompt_images", self._owner(id=image_id))
            if prompt.image_url == image.path:
                remaining = steps.run(
                    "load_remaining",
                    self.db.select,
                    "prompt_images",
                    "*",
                    self._owner(prompt_id=prompt.id),
                    None,
                    (),
                    [("created_at", True)],
                    1,
                    writes=False,
                )
                steps.run(
                    "update_primary_image",
                    self.db.update,
                    "prompts",
                    self._owner(id=prompt.id),
                    {"image_url": remaining[0]["path"] if remaining else None, "updated_at": _now()},
                )
        finally:
            self._invalidate_prompts()

        logger.info("prompt.image_removed", prompt_id=prompt.id, image_id=image_id)

    def delete_prompt(self, prompt_id: str) -> CascadeResult:
        """Delete a prompt with its images and tag links. Throttled."""
        self._throttle(DELETE_PROMPT_ACTION)
        prompt = self.get_prompt(prompt_id)
        try:
            result = CascadeDelete(self.db, self.session, self.bucket).run(prompt)
        finally:
            # Even a partial cascade changed what the views should show
            self._invalidate_prompts()
        logger.info("prompt.deleted", prompt_id=prompt_id, objects=len(result.removed_objects))
        return result

    # --- Tag mutations ---

    def _require_tag(self, tag_id: str) -> TagRow:
        for tag in self.list_tags():
            if tag.id == tag_id:
                return tag
        raise NotFoundError(f"Tag '{tag_id}' not found")

    def _check_unique(self, name: str, exclude_id: str | None = None) -> None:
        rows = self.db.select("tags", columns="id", filters=self._owner(name=name))
        if any(r["id"] != exclude_id for r in rows):
            raise DuplicateTagError(f"Tag '{name}' already exists")

    def create_tag(self, name: str) -> TagRow:
        name = self._check_tag_name(name)
        self._throttle(TAG_ACTION)
        self._check_unique(name)
        row = self.db.insert("tags", {"user_id": self.session.user_id, "name": name})
        self._invalidate_tags()
        logger.info("tag.created", tag_id=row["id"], name=name)
        return TagRow(**row)

    def rename_tag(self, tag_id: str, name: str) -> TagRow:
        name = self._check_tag_name(name)
        self._throttle(TAG_ACTION)
        self._require_tag(tag_id)
        self._check_unique(name, exclude_id=tag_id)
        rows = self.db.update("tags", self._owner(id=tag_id), {"name": name})
        if not rows:
            raise NotFoundError(f"Tag '{tag_id}' not found")
        self._invalidate_tags()
        logger.info("tag.renamed", tag_id=tag_id, name=name)
        return TagRow(**rows[0])

    def delete_tag(self, tag_id: str) -> None:
        self._throttle(TAG_ACTION)
        self._require_tag(tag_id)
        steps = _Steps("delete_tag")
        try:
            steps.run("delete_tag_links", self.db.delete, "prompt_tags", self._owner(tag_id=tag_id))
            steps.run("delete_tag", self.db.delete, "tags", self._owner(id=tag_id))
        finally:
            self._invalidate_tags()
        logger.info("tag.deleted", tag_id=tag_id)
