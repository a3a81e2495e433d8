"""Out-of-band reconciliation of stored images against the rows that reference them."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from prompt_vault.core.signing import is_absolute_reference
from prompt_vault.db.client import SupabaseClient

logger = structlog.get_logger()


@dataclass
class PruneReport:
    prompts_checked: int = 0
    images_removed: int = 0
    primaries_promoted: int = 0


@dataclass
class SweepReport:
    objects_checked: int = 0
    orphans_removed: int = 0
    dangling_rows_removed: int = 0
    primaries_reset: int = 0


def storage_key_from_reference(reference: str | None, bucket: str) -> str | None:
    """Extract the object key from a stored reference.

    Plain keys are returned as-is. Public bucket URLs
    (``.../storage/v1/object/public/{bucket}/{key}``) yield their key; any other
    absolute URL yields None.
    """
    if not reference:
        return None
    if not is_absolute_reference(reference):
        return reference
    match = re.search(rf"storage/v1/object/public/{re.escape(bucket)}/(.+)$", reference)
    return match.group(1) if match else None


def prune_duplicate_images(db: SupabaseClient, bucket: str, dry_run: bool = False) -> PruneReport:
    """Keep one image per prompt and remove the rest.

    The kept image is the prompt's primary. A prompt with images but no primary
    gets its first image promoted. Runs across all owners, so it needs a
    service-role key.
    """
    prompts = db.select_all("prompts", columns="id, image_url", order=[("id", True)])
    images = db.select_all(
        "prompt_images",
        columns="id, prompt_id, path, image_url",
        order=[("created_at", True), ("id", True)],
    )

    by_prompt: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for image in images:
        by_prompt[image["prompt_id"]].append(image)

    report = PruneReport()
    for prompt in prompts:
        report.prompts_checked += 1
        imgs = by_prompt.get(prompt["id"], [])
        if not imgs:
            continue

        keep_path = storage_key_from_reference(prompt.get("image_url"), bucket)
        if keep_path is None:
            keep_path = imgs[0]["path"]
            report.primaries_promoted += 1
            if not dry_run:
                db.update("prompts", {"id": prompt["id"]}, {"image_url": keep_path})

        for image in imgs:
            if image["path"] == keep_path:
                continue
            report.images_removed += 1
            if dry_run:
                continue
            db.remove(bucket, [image["path"]])
            db.delete("prompt_images", {"id": image["id"]})

    logger.info(
        "maintenance.pruned",
        checked=report.prompts_checked,
        removed=report.images_removed,
        promoted=report.primaries_promoted,
        dry_run=dry_run,
    )
    return report


# Supabase keeps this marker in otherwise empty folders
_PLACEHOLDER = ".emptyFolderPlaceholder"


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def list_stored_keys(db: SupabaseClient, bucket: str) -> dict[str, datetime | None]:
    """Map every object key in the bucket to its creation time.

    Keys are ``{owner}/{file}``, so the walk is two levels deep.
    """
    keys: dict[str, datetime | None] = {}
    for folder in db.list_objects(bucket):
        if folder.get("id") is not None:
            continue
        for entry in db.list_objects(bucket, folder["name"]):
            if entry.get("id") is None or entry["name"] == _PLACEHOLDER:
                continue
            keys[f"{folder['name']}/{entry['name']}"] = _parse_time(entry.get("created_at"))
    return keys


def sweep_orphans(
    db: SupabaseClient,
    bucket: str,
    dry_run: bool = False,
    min_age: timedelta = timedelta(hours=1),
    now: datetime | None = None,
) -> SweepReport:
    """Reconcile storage with the rows after interrupted writes.

    - Objects no row references are removed once older than ``min_age``;
      younger ones may belong to a create that has not inserted its rows yet.
    - ``prompt_images`` rows whose object is gone are deleted.
    - A primary pointing at a missing object moves to the prompt's oldest
      surviving image, or is cleared.

    Runs across all owners, so it needs a service-role key.
    """
    now = now or datetime.now(timezone.utc)
    stored = list_stored_keys(db, bucket)
    prompts = db.select_all("prompts", columns="id, image_url", order=[("id", True)])
    images = db.select_all(
        "prompt_images",
        columns="id, prompt_id, path",
        order=[("created_at", True), ("id", True)],
    )

    report = SweepReport(objects_checked=len(stored))

    referenced = {image["path"] for image in images}
    for prompt in prompts:
        key = storage_key_from_reference(prompt.get("image_url"), bucket)
        if key:
            referenced.add(key)

    orphans = [
        key
        for key, created in sorted(stored.items())
        if key not in referenced and (created is None or now - created >= min_age)
    ]
    report.orphans_removed = len(orphans)
    if orphans and not dry_run:
        db.remove(bucket, orphans)

    surviving: dict[str, list[str]] = defaultdict(list)
    for image in images:
        if image["path"] in stored:
            surviving[image["prompt_id"]].append(image["path"])
            continue
        report.dangling_rows_removed += 1
        if not dry_run:
            db.delete("prompt_images", {"id": image["id"]})

    for prompt in prompts:
        key = storage_key_from_reference(prompt.get("image_url"), bucket)
        if key is None or key in stored:
            continue
        remaining = surviving.get(prompt["id"], [])
        report.primaries_reset += 1
        if not dry_run:
            db.update("prompts", {"id": prompt["id"]}, {"image_url": remaining[0] if remaining else None})

    logger.info(
        "maintenance.swept",
        checked=report.objects_checked,
        orphans=report.orphans_removed,
        dangling=report.dangling_rows_removed,
        reset=report.primaries_reset,
        dry_run=dry_run,
    )
    return report
