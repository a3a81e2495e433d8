"""API client for the PromptVault REST API."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click
import httpx

from prompt_vault.core.feed import FeedItem, FeedPage, FeedState
from prompt_vault.core.imaging import ImageUpload
from prompt_vault.db.models import PromptRow


class ApiError(click.ClickException):
    """An error response from the API, printed by click as ``Error: ...``."""

    def __init__(self, status_code: int, detail: Any) -> None:
        self.status_code = status_code
        self.detail = detail
        if isinstance(detail, dict):
            detail = detail.get("message", detail)
        super().__init__(f"API error ({status_code}): {detail}")


class VaultClient:
    """HTTP client wrapping all PromptVault API endpoints."""

    def __init__(self, base_url: str = "http://localhost:8400", auth_token: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.Client(base_url=f"{self.base_url}/api/v1", headers=headers, timeout=30)

    def _handle(self, resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise ApiError(resp.status_code, detail)
        if resp.status_code == 204:
            return None
        return resp.json()

    # --- Feed ---

    def feed_page(self, state: FeedState, page: int) -> FeedPage:
        params: dict[str, Any] = {
            "sort_field": state.sort_field.value,
            "sort_direction": state.sort_direction.value,
            "tag_mode": state.tag_mode.value,
            "view_mode": state.view_mode.value,
            "page": page,
        }
        if state.selected_tag_ids:
            params["tag_ids"] = list(state.selected_tag_ids)
        data = self._handle(self._client.get("/feed", params=params))
        items = [
            FeedItem(prompt=PromptRow(**{k: v for k, v in item.items() if k != "tags"}), tag_names=item["tags"])
            for item in data["items"]
        ]
        return FeedPage(items=items, page=data["page"], has_more=data["has_more"])

    # --- Prompts ---

    def create_prompt(
        self, content: str, tag_ids: list[str] | None = None, images: list[ImageUpload] | None = None
    ) -> dict:
        files = [("images", (img.filename, img.data, img.content_type)) for img in images or []]
        data = {"content": content, "tag_ids": tag_ids or []}
        return self._handle(self._client.post("/prompts", data=data, files=files or None))

    def get_prompt(self, prompt_id: str) -> dict:
        return self._handle(self._client.get(f"/prompts/{prompt_id}"))

    def update_prompt(self, prompt_id: str, data: dict) -> dict:
        return self._handle(self._client.put(f"/prompts/{prompt_id}", json=data))

    def delete_prompt(self, prompt_id: str) -> None:
        self._handle(self._client.delete(f"/prompts/{prompt_id}"))

    # --- Images ---

    def list_images(self, prompt_id: str) -> list[dict]:
        return self._handle(self._client.get(f"/prompts/{prompt_id}/images"))

    def add_image(self, prompt_id: str, image: ImageUpload) -> dict:
        files = {"image": (image.filename, image.data, image.content_type)}
        return self._handle(self._client.post(f"/prompts/{prompt_id}/images", files=files))

    def remove_image(self, image_id: str) -> None:
        self._handle(self._client.delete(f"/images/{image_id}"))

    def signed_url(self, reference: str) -> str | None:
        return self._handle(self._client.get("/images/signed", params={"ref": reference}))["url"]

    def download(self, url: str, destination: Path) -> int:
        """Stream a (signed) image URL to ``destination``; returns bytes written."""
        written = 0
        with httpx.stream("GET", url, timeout=60, follow_redirects=True) as resp:
            if resp.status_code >= 400:
                raise ApiError(resp.status_code, "download failed")
            with destination.open("wb") as f:
                for chunk in resp.iter_bytes():
                    f.write(chunk)
                    written += len(chunk)
        return written

    # --- Tags ---

    def list_tags(self) -> list[dict]:
        return self._handle(self._client.get("/tags"))

    def create_tag(self, name: str) -> dict:
        return self._handle(self._client.post("/tags", json={"name": name}))

    def rename_tag(self, tag_id: str, name: str) -> dict:
        return self._handle(self._client.put(f"/tags/{tag_id}", json={"name": name}))

    def delete_tag(self, tag_id: str) -> None:
        self._handle(self._client.delete(f"/tags/{tag_id}"))
