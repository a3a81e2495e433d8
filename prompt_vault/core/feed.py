"""Feed Query Engine — filtered, sorted, paginated prompt feed.

``FeedQuery`` turns a ``FeedState`` and a page number into remote queries.
``Feed`` is the stateful side: it owns the current state, the merged pages and
the in-flight guard that keeps infinite scroll from double-fetching.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import structlog

from prompt_vault.core.cache import QueryCache
from prompt_vault.core.session import Session
from prompt_vault.core.tagging import TagIndex, TagMode, matching_prompt_ids, toggle_tag
from prompt_vault.db.client import SupabaseClient
from prompt_vault.db.models import PromptRow

logger = structlog.get_logger()

PAGE_SIZE = 24


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ViewMode(str, Enum):
    LIST = "list"
    PICTURES = "pictures"


class Density(str, Enum):
    COMPACT = "compact"
    COMFORTABLE = "comfortable"


@dataclass(frozen=True)
class FeedState:
    """Everything that decides which prompts the feed shows and in what order."""

    sort_field: SortField = SortField.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC
    selected_tag_ids: tuple[str, ...] = ()
    tag_mode: TagMode = TagMode.OR
    view_mode: ViewMode = ViewMode.LIST
    density: Density = Density.COMFORTABLE

    def query_key(self) -> tuple[Any, ...]:
        """The part of the state that changes query results (density does not)."""
        return (
            self.sort_field.value,
            self.sort_direction.value,
            tuple(sorted(self.selected_tag_ids)),
            self.tag_mode.value,
            self.view_mode.value,
        )


@dataclass
class FeedItem:
    prompt: PromptRow
    tag_names: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.prompt.id


@dataclass
class FeedPage:
    items: list[FeedItem]
    page: int
    has_more: bool


class FeedQuery:
    """Builds and runs the remote queries for one page of the feed."""

    # Larger tag matches page through an ordered id scan instead of an
    # ``id=in.(...)`` filter, which grows the request URL with every id
    MAX_INLINE_IDS = 200

    def __init__(
        self,
        db: SupabaseClient,
        session: Session,
        cache: QueryCache,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.db = db
        self.session = session
        self.cache = cache
        self.page_size = page_size

    def fetch_page(self, state: FeedState, page: int) -> FeedPage:
        """Fetch page ``page`` (0-based) for ``state``, through the query cache."""
        key = ("feed", self.session.user_id, state.query_key(), page)
        return self.cache.get_or_fetch(key, lambda: self._fetch(state, page))

    def _matching_ids(self, state: FeedState) -> set[str]:
        links = self.db.select_all(
            "prompt_tags",
            columns="prompt_id, tag_id",
            filters=self.session.owner_filter(),
            in_filters={"tag_id": state.selected_tag_ids},
            order=[("prompt_id", True), ("tag_id", True)],
        )
        return matching_prompt_ids(links, state.selected_tag_ids, state.tag_mode)

    def _fetch(self, state: FeedState, page: int) -> FeedPage:
        ascending = state.sort_direction is SortDirection.ASC
        # id breaks ties between identical timestamps so page boundaries are stable
        order = [(state.sort_field.value, ascending), ("id", True)]
        not_null = ("image_url",) if state.view_mode is ViewMode.PICTURES else ()

        if not state.selected_tag_ids:
            rows = self._select_page(order, not_null, page)
        else:
            ids = self._matching_ids(state)
            if not ids:
                logger.info(
                    "feed.no_matches",
                    tags=len(state.selected_tag_ids),
                    mode=state.tag_mode.value,
                )
                return FeedPage(items=[], page=page, has_more=False)
            if len(ids) > self.MAX_INLINE_IDS:
                rows = self._scan_page(ids, order, not_null, page)
            else:
                rows = self._select_page(order, not_null, page, {"id": sorted(ids)})

        items = self._annotate(rows)
        logger.info("feed.page_loaded", page=page, rows=len(rows), sort=state.sort_field.value)
        return FeedPage(items=items, page=page, has_more=len(rows) == self.page_size)

    def _select_page(
        self,
        order: list[tuple[str, bool]],
        not_null: tuple[str, ...],
        page: int,
        in_filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        return self.db.select(
            "prompts",
            filters=self.session.owner_filter(),
            in_filters=in_filters,
            not_null=not_null,
            order=order,
            limit=self.page_size,
            offset=page * self.page_size,
        )

    def _scan_page(
        self,
        ids: set[str],
        order: list[tuple[str, bool]],
        not_null: tuple[str, ...],
        page: int,
    ) -> list[dict[str, Any]]:
        """Pick the page from the owner's ordered id list, then load only its rows."""
        ordered = self.db.select_all(
            "prompts",
            columns="id",
            filters=self.session.owner_filter(),
            not_null=not_null,
            order=order,
        )
        start = page * self.page_size
        page_ids = [r["id"] for r in ordered if r["id"] in ids][start : start + self.page_size]
        if not page_ids:
            return []
        rows = self.db.select(
            "prompts", filters=self.session.owner_filter(), in_filters={"id": page_ids}
        )
        by_id = {r["id"]: r for r in rows}
        return [by_id[i] for i in page_ids if i in by_id]

    def _annotate(self, rows: list[dict[str, Any]]) -> list[FeedItem]:
        if not rows:
            return []
        links = self.db.select_all(
            "prompt_tags",
            columns="prompt_id, tag_id, tags(name)",
            filters=self.session.owner_filter(),
            in_filters={"prompt_id": [r["id"] for r in rows]},
            order=[("prompt_id", True), ("tag_id", True)],
        )
        index = TagIndex.from_embedded(links)
        return [FeedItem(prompt=PromptRow(**r), tag_names=index.names_for(r["id"])) for r in rows]


PageFetcher = Callable[[FeedState, int], FeedPage]


class Feed:
    """Stateful feed: current state, merged items and infinite-scroll triggering.

    Any state change restarts pagination from page 0. ``load_more`` merges the
    next page, skipping prompts already shown. A fetch that finishes after the
    state changed is discarded.
    """

    def __init__(self, fetch_page: PageFetcher, state: FeedState | None = None) -> None:
        self._fetch_page = fetch_page
        self.state = state or FeedState()
        self.items: list[FeedItem] = []
        self.next_page = 0
        self.has_more = True
        self._seen: set[str] = set()
        self._generation = 0
        self._in_flight = threading.Lock()

    @property
    def loading(self) -> bool:
        return self._in_flight.locked()

    def refresh(self) -> FeedPage | None:
        """Drop everything loaded so far and fetch the first page."""
        self._generation += 1
        self.items = []
        self._seen = set()
        self.next_page = 0
        self.has_more = True
        return self._load(blocking=True)

    def set_state(self, **changes: Any) -> FeedPage | None:
        self.state = replace(self.state, **changes)
        return self.refresh()

    def toggle_tag(self, tag_id: str) -> FeedPage | None:
        return self.set_state(selected_tag_ids=toggle_tag(self.state.selected_tag_ids, tag_id))

    def clear_tags(self) -> FeedPage | None:
        return self.set_state(selected_tag_ids=())

    def load_more(self) -> FeedPage | None:
        """Fetch and merge the next page. Returns None when nothing was fetched."""
        if not self.has_more:
            return None
        return self._load(blocking=False)

    def on_sentinel_visible(self) -> bool:
        """The element after the last item scrolled into view. Returns True if a fetch ran."""
        if self.loading or not self.has_more:
            return False
        return self.load_more() is not None

    def _load(self, blocking: bool) -> FeedPage | None:
        if not self._in_flight.acquire(blocking=blocking):
            logger.debug("feed.fetch_in_flight", page=self.next_page)
            return None
        try:
            generation = self._generation
            page = self._fetch_page(self.state, self.next_page)
            if generation != self._generation:
                return None
            self._merge(page)
            return page
        finally:
            self._in_flight.release()

    def _merge(self, page: FeedPage) -> None:
        for item in page.items:
            if item.id in self._seen:
                continue
            self._seen.add(item.id)
            self.items.append(item)
        self.next_page = page.page + 1
        self.has_more = page.has_more
