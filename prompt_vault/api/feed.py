"""Feed endpoint — one page of the filtered, sorted prompt feed."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from prompt_vault.api.deps import get_feed_query
from prompt_vault.api.errors import http_error
from prompt_vault.api.models import FeedResponse, PromptResponse
from prompt_vault.core.errors import VaultError
from prompt_vault.core.feed import FeedQuery, FeedState, SortDirection, SortField, ViewMode
from prompt_vault.core.tagging import TagMode

router = APIRouter()


@router.get("", response_model=FeedResponse)
async def get_feed(
    sort_field: SortField = SortField.CREATED_AT,
    sort_direction: SortDirection = SortDirection.DESC,
    tag_ids: list[str] = Query(default=[]),
    tag_mode: TagMode = TagMode.OR,
    view_mode: ViewMode = ViewMode.LIST,
    page: int = Query(default=0, ge=0),
    feed: FeedQuery = Depends(get_feed_query),
) -> FeedResponse:
    """Fetch one page. A page shorter than the page size has ``has_more`` false."""
    state = FeedState(
        sort_field=sort_field,
        sort_direction=sort_direction,
        selected_tag_ids=tuple(dict.fromkeys(tag_ids)),
        tag_mode=tag_mode,
        view_mode=view_mode,
    )
    try:
        result = feed.fetch_page(state, page)
    except VaultError as e:
        raise http_error(e) from e
    return FeedResponse(
        items=[PromptResponse.from_item(item) for item in result.items],
        page=result.page,
        has_more=result.has_more,
    )
