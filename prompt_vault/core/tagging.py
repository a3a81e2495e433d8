"""Tag aggregation — prompt→tag mapping and AND/OR filter evaluation."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any


class TagMode(str, Enum):
    """How a multi-tag selection combines."""

    OR = "OR"
    AND = "AND"


def _matches(tag_ids: set[str], selected: Sequence[str], mode: TagMode) -> bool:
    if not selected:
        return True
    if mode is TagMode.AND:
        return all(tag_id in tag_ids for tag_id in selected)
    return any(tag_id in tag_ids for tag_id in selected)


def toggle_tag(selection: Sequence[str], tag_id: str) -> tuple[str, ...]:
    """Remove ``tag_id`` if selected, otherwise append it."""
    if tag_id in selection:
        return tuple(t for t in selection if t != tag_id)
    return (*selection, tag_id)


def matching_prompt_ids(
    links: Iterable[dict[str, Any]], selected_tag_ids: Sequence[str], mode: TagMode
) -> set[str]:
    """Reduce prompt-tag rows to the ids of prompts satisfying the selection.

    ``links`` only needs to contain rows for the selected tags. With an empty
    selection every prompt seen in ``links`` matches.
    """
    by_prompt: dict[str, set[str]] = defaultdict(set)
    for link in links:
        by_prompt[link["prompt_id"]].add(link["tag_id"])
    return {pid for pid, tag_ids in by_prompt.items() if _matches(tag_ids, selected_tag_ids, mode)}


class TagIndex:
    """Display and filter view over a user's tags and prompt-tag links."""

    def __init__(self, tag_ids: dict[str, set[str]], tag_names: dict[str, list[str]]) -> None:
        self._tag_ids = tag_ids
        self._tag_names = tag_names

    @classmethod
    def from_rows(
        cls, tags: Iterable[dict[str, Any]], links: Iterable[dict[str, Any]]
    ) -> TagIndex:
        """Build from the full tag set and the full link set."""
        names = {tag["id"]: tag["name"] for tag in tags}
        tag_ids: dict[str, set[str]] = defaultdict(set)
        tag_names: dict[str, list[str]] = defaultdict(list)
        for link in links:
            tag_ids[link["prompt_id"]].add(link["tag_id"])
            # Links to a tag outside the set (e.g. just deleted) are not displayed
            if link["tag_id"] in names:
                tag_names[link["prompt_id"]].append(names[link["tag_id"]])
        return cls(dict(tag_ids), {pid: sorted(n) for pid, n in tag_names.items()})

    @classmethod
    def from_embedded(cls, links: Iterable[dict[str, Any]]) -> TagIndex:
        """Build from link rows carrying the tag embedded, as ``{"tags": {"name": ...}}``."""
        tag_ids: dict[str, set[str]] = defaultdict(set)
        tag_names: dict[str, list[str]] = defaultdict(list)
        for link in links:
            tag_ids[link["prompt_id"]].add(link["tag_id"])
            name = (link.get("tags") or {}).get("name")
            if name:
                tag_names[link["prompt_id"]].append(name)
        return cls(dict(tag_ids), {pid: sorted(n) for pid, n in tag_names.items()})

    def tag_ids_for(self, prompt_id: str) -> set[str]:
        return set(self._tag_ids.get(prompt_id, ()))

    def names_for(self, prompt_id: str) -> list[str]:
        return list(self._tag_names.get(prompt_id, ()))

    def display_map(self) -> dict[str, list[str]]:
        """``prompt_id -> [tag name]`` for every tagged prompt."""
        return {pid: list(names) for pid, names in self._tag_names.items()}

    def matches(
        self, prompt_id: str, selected_tag_ids: Sequence[str], mode: TagMode = TagMode.OR
    ) -> bool:
        """OR: any selected tag present. AND: all present. Empty selection matches all."""
        return _matches(self._tag_ids.get(prompt_id, set()), selected_tag_ids, mode)
