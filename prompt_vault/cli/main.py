"""PromptVault CLI — vault command."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError as PydanticValidationError

from prompt_vault.cli.client import VaultClient
from prompt_vault.config import get_settings
from prompt_vault.core import imaging
from prompt_vault.core.errors import ValidationError
from prompt_vault.core.feed import Feed, SortDirection, SortField, ViewMode
from prompt_vault.core.imaging import ImageUpload
from prompt_vault.core.preferences import DisplayPreferences, PreferencesStore
from prompt_vault.core.tagging import TagMode


def _format_table(rows: list[dict], columns: list[str]) -> str:
    """Simple table formatter."""
    if not rows:
        return "No results."
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            widths[c] = max(widths[c], len(str(row.get(c, ""))))

    header = "  ".join(c.upper().ljust(widths[c]) for c in columns)
    separator = "  ".join("-" * widths[c] for c in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(str(row.get(c, "")).ljust(widths[c]) for c in columns))
    return "\n".join(lines)


def _excerpt(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 1] + "…"


@click.group()
@click.option("--api", default="http://localhost:8400", envvar="VAULT_API", help="API base URL")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--token", default=None, envvar="VAULT_TOKEN", help="Access token from the auth service")
@click.pass_context
def cli(ctx: click.Context, api: str, output_format: str, token: str | None) -> None:
    """PromptVault CLI — browse, tag and manage your prompts."""
    ctx.obj = VaultClient(base_url=api, auth_token=token)
    ctx.meta["output_format"] = output_format


def _output(ctx: click.Context, data: Any, columns: list[str] | None = None) -> None:
    fmt = ctx.meta.get("output_format", "table")
    if fmt == "table" and isinstance(data, list) and columns:
        click.echo(_format_table(data, columns))
    else:
        click.echo(json.dumps(data, indent=2, default=str))


def _preferences() -> PreferencesStore:
    return PreferencesStore(get_settings().preferences_path)


def _resolve_tags(client: VaultClient, values: tuple[str, ...]) -> list[str]:
    """Accept tag names or ids; return ids."""
    if not values:
        return []
    tags = client.list_tags()
    by_name = {t["name"]: t["id"] for t in tags}
    ids = {t["id"] for t in tags}
    resolved = []
    for value in values:
        if value in ids:
            resolved.append(value)
        elif value in by_name:
            resolved.append(by_name[value])
        else:
            raise click.BadParameter(f"Unknown tag '{value}'", param_hint="--tag")
    return resolved


def _load_images(paths: tuple[str, ...]) -> list[ImageUpload]:
    """Read and validate images locally so bad files never reach the API."""
    uploads = [ImageUpload.from_path(p) for p in paths]
    try:
        for upload in uploads:
            imaging.validate(upload, max_bytes=get_settings().max_upload_bytes)
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--image") from e
    return uploads


# --- Prompt commands ---


@cli.group()
def prompt() -> None:
    """Manage prompts."""


@prompt.command("list")
@click.option("--tag", "tags", multiple=True, help="Filter by tag name or id (repeatable)")
@click.option("--mode", type=click.Choice([m.value for m in TagMode]), default=TagMode.OR.value)
@click.option("--sort", "sort_field", type=click.Choice([f.value for f in SortField]), default=None)
@click.option("--direction", type=click.Choice([d.value for d in SortDirection]), default=None)
@click.option("--view", "view_mode", type=click.Choice([v.value for v in ViewMode]), default=None)
@click.option("--pages", default=1, show_default=True, help="Number of pages to load")
@click.option("--all", "load_all", is_flag=True, help="Keep loading until the feed is exhausted")
@click.pass_context
def prompt_list(
    ctx: click.Context,
    tags: tuple[str, ...],
    mode: str,
    sort_field: str | None,
    direction: str | None,
    view_mode: str | None,
    pages: int,
    load_all: bool,
) -> None:
    """List prompts, newest first unless your preferences say otherwise."""
    client: VaultClient = ctx.obj
    state = _preferences().load().feed_state()
    changes: dict[str, Any] = {"tag_mode": TagMode(mode), "selected_tag_ids": tuple(_resolve_tags(client, tags))}
    if sort_field:
        changes["sort_field"] = SortField(sort_field)
    if direction:
        changes["sort_direction"] = SortDirection(direction)
    if view_mode:
        changes["view_mode"] = ViewMode(view_mode)

    feed = Feed(client.feed_page, state)
    feed.set_state(**changes)
    loaded = 1
    while (load_all or loaded < pages) and feed.on_sentinel_visible():
        loaded += 1

    rows = [
        {
            "id": item.id,
            "content": _excerpt(item.prompt.content),
            "tags": ", ".join(item.tag_names),
            "image": "yes" if item.prompt.image_url else "",
            "created_at": item.prompt.created_at.strftime("%Y-%m-%d %H:%M"),
            "updated_at": item.prompt.updated_at.strftime("%Y-%m-%d %H:%M"),
        }
        for item in feed.items
    ]
    if ctx.meta.get("output_format") == "json":
        _output(ctx, [{**item.prompt.model_dump(mode="json"), "tags": item.tag_names} for item in feed.items])
    else:
        _output(ctx, rows, ["id", "content", "tags", "image", "created_at", "updated_at"])
        if feed.has_more:
            click.echo("\nMore prompts available (use --pages or --all).", err=True)


@prompt.command("create")
@click.option("--content", "-c", default=None, help="Prompt text (reads stdin when omitted)")
@click.option("--tag", "tags", multiple=True, help="Tag name or id (repeatable)")
@click.option("--image", "images", multiple=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def prompt_create(
    ctx: click.Context, content: str | None, tags: tuple[str, ...], images: tuple[str, ...]
) -> None:
    """Create a prompt."""
    client: VaultClient = ctx.obj
    if content is None:
        content = sys.stdin.read()
    if not content.strip():
        raise click.BadParameter("Prompt content must not be empty", param_hint="--content")
    uploads = _load_images(images)
    result = client.create_prompt(content, tag_ids=_resolve_tags(client, tags), images=uploads)
    _output(ctx, result)


@prompt.command("show")
@click.argument("prompt_id")
@click.pass_context
def prompt_show(ctx: click.Context, prompt_id: str) -> None:
    """Show a prompt with its tags and images."""
    client: VaultClient = ctx.obj
    _output(ctx, client.get_prompt(prompt_id))


@prompt.command("edit")
@click.argument("prompt_id")
@click.option("--content", "-c", default=None)
@click.option("--tag", "tags", multiple=True, help="Replace the tag set (repeatable)")
@click.option("--clear-tags", is_flag=True, help="Remove every tag from the prompt")
@click.option("--image", default=None, type=click.Path(exists=True, dir_okay=False), help="Replace the image")
@click.option("--clear-image", is_flag=True)
@click.pass_context
def prompt_edit(
    ctx: click.Context,
    prompt_id: str,
    content: str | None,
    tags: tuple[str, ...],
    clear_tags: bool,
    image: str | None,
    clear_image: bool,
) -> None:
    """Edit a prompt's content, tags or image."""
    client: VaultClient = ctx.obj
    if image and clear_image:
        raise click.UsageError("--image and --clear-image are mutually exclusive")
    if tags and clear_tags:
        raise click.UsageError("--tag and --clear-tags are mutually exclusive")
    uploads = _load_images((image,)) if image else []

    data: dict[str, Any] = {"clear_image": clear_image}
    if content is not None:
        data["content"] = content
    if tags or clear_tags:
        data["tag_ids"] = _resolve_tags(client, tags)
    result = client.update_prompt(prompt_id, data)
    if uploads:
        client.add_image(prompt_id, uploads[0])
        result = client.get_prompt(prompt_id)
    _output(ctx, result)


@prompt.command("delete")
@click.argument("prompt_id")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def prompt_delete(ctx: click.Context, prompt_id: str, yes: bool) -> None:
    """Delete a prompt, its images and its tag links. This cannot be undone."""
    client: VaultClient = ctx.obj
    if not yes:
        click.confirm("Delete this prompt? This cannot be undone.", abort=True)
    client.delete_prompt(prompt_id)
    click.echo(f"Deleted prompt '{prompt_id}'")


# --- Image commands ---


@cli.group()
def image() -> None:
    """Manage prompt images."""


@image.command("list")
@click.argument("prompt_id")
@click.pass_context
def image_list(ctx: click.Context, prompt_id: str) -> None:
    client: VaultClient = ctx.obj
    _output(ctx, client.list_images(prompt_id), ["id", "path", "image_url"])


@image.command("add")
@click.argument("prompt_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def image_add(ctx: click.Context, prompt_id: str, path: str) -> None:
    """Attach an image; it becomes the primary and replaces older ones."""
    client: VaultClient = ctx.obj
    (upload,) = _load_images((path,))
    _output(ctx, client.add_image(prompt_id, upload))


@image.command("remove")
@click.argument("image_id")
@click.pass_context
def image_remove(ctx: click.Context, image_id: str) -> None:
    client: VaultClient = ctx.obj
    client.remove_image(image_id)
    click.echo(f"Removed image '{image_id}'")


@image.command("url")
@click.argument("reference")
@click.pass_context
def image_url(ctx: click.Context, reference: str) -> None:
    """Print a viewable URL for a stored image reference."""
    client: VaultClient = ctx.obj
    url = client.signed_url(reference)
    if url is None:
        raise click.ClickException(f"Could not sign '{reference}'")
    click.echo(url)


@image.command("download")
@click.argument("reference")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.pass_context
def image_download(ctx: click.Context, reference: str, output: Path | None) -> None:
    """Download a stored image to a local file."""
    client: VaultClient = ctx.obj
    url = client.signed_url(reference)
    if url is None:
        raise click.ClickException(f"Could not sign '{reference}'")
    output = output or Path(reference.rsplit("/", 1)[-1])
    size = client.download(url, output)
    click.echo(f"Saved {size} bytes to {output}")


# --- Tag commands ---


@cli.group()
def tag() -> None:
    """Manage tags."""


@tag.command("list")
@click.pass_context
def tag_list(ctx: click.Context) -> None:
    client: VaultClient = ctx.obj
    _output(ctx, client.list_tags(), ["id", "name"])


@tag.command("create")
@click.argument("name")
@click.pass_context
def tag_create(ctx: click.Context, name: str) -> None:
    client: VaultClient = ctx.obj
    _output(ctx, client.create_tag(name))


@tag.command("rename")
@click.argument("tag")
@click.argument("name")
@click.pass_context
def tag_rename(ctx: click.Context, tag: str, name: str) -> None:
    """Rename TAG (name or id) to NAME."""
    client: VaultClient = ctx.obj
    (tag_id,) = _resolve_tags(client, (tag,))
    _output(ctx, client.rename_tag(tag_id, name))


@tag.command("delete")
@click.argument("tag")
@click.pass_context
def tag_delete(ctx: click.Context, tag: str) -> None:
    """Delete TAG (name or id) and unlink it from all prompts."""
    client: VaultClient = ctx.obj
    (tag_id,) = _resolve_tags(client, (tag,))
    client.delete_tag(tag_id)
    click.echo(f"Deleted tag '{tag}'")


# --- Preferences ---


@cli.group()
def prefs() -> None:
    """Local display preferences."""


@prefs.command("show")
@click.pass_context
def prefs_show(ctx: click.Context) -> None:
    _output(ctx, _preferences().load().model_dump(mode="json"))


@prefs.command("set")
@click.argument("key", type=click.Choice(sorted(DisplayPreferences.model_fields)))
@click.argument("value")
@click.pass_context
def prefs_set(ctx: click.Context, key: str, value: str) -> None:
    """Remember a display preference, e.g. ``vault prefs set sort_field updated_at``."""
    try:
        updated = _preferences().set(key, value)
    except PydanticValidationError:
        raise click.BadParameter(f"Invalid value '{value}' for {key}", param_hint="VALUE")
    _output(ctx, updated.model_dump(mode="json"))


if __name__ == "__main__":
    cli()
