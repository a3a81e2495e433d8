"""Client-side display preferences, persisted as simple key-value JSON.

Preferences are never authoritative: a missing, unreadable or invalid file
falls back to defaults.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from prompt_vault.core.feed import Density, FeedState, SortDirection, SortField, ViewMode

logger = structlog.get_logger()


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


class DisplayPreferences(BaseModel):
    """Remembered display choices: theme, view mode, density and last-used sort."""

    theme: Theme = Theme.DARK
    view_mode: ViewMode = ViewMode.LIST
    density: Density = Density.COMFORTABLE
    sort_field: SortField = SortField.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC

    def feed_state(self) -> FeedState:
        """Initial feed state derived from the remembered view and sort."""
        return FeedState(
            sort_field=self.sort_field,
            sort_direction=self.sort_direction,
            view_mode=self.view_mode,
            density=self.density,
        )


class PreferencesStore:
    """Reads and writes ``DisplayPreferences`` at a file path."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> DisplayPreferences:
        if not self.path.exists():
            return DisplayPreferences()
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("preferences.unreadable", path=str(self.path), error=str(e))
            return DisplayPreferences()
        if not isinstance(raw, dict):
            return DisplayPreferences()

        defaults = DisplayPreferences()
        values: dict[str, Any] = {}
        # Keep each valid key on its own so one bad value doesn't reset the rest
        for key, value in raw.items():
            if key not in DisplayPreferences.model_fields:
                continue
            try:
                values[key] = getattr(DisplayPreferences(**{key: value}), key)
            except ValidationError:
                logger.warning("preferences.invalid_value", key=key, value=value)
        return defaults.model_copy(update=values)

    def save(self, prefs: DisplayPreferences) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(prefs.model_dump(mode="json"), indent=2))

    def set(self, key: str, value: str) -> DisplayPreferences:
        """Validate and persist one preference."""
        if key not in DisplayPreferences.model_fields:
            raise KeyError(key)
        current = self.load()
        updated = DisplayPreferences(**{**current.model_dump(), key: value})
        self.save(updated)
        return updated
