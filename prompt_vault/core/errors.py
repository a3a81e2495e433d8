"""Error taxonomy shared by the core, the API and the CLI."""

from __future__ import annotations


class VaultError(Exception):
    """Base class for every error raised by prompt_vault."""


class ValidationError(VaultError):
    """Bad input caught before any network call was made."""


class InvalidTypeError(ValidationError):
    """An upload's MIME type is not in the allow-list."""

    def __init__(self, content_type: str, allowed: frozenset[str] | set[str]) -> None:
        self.content_type = content_type
        self.allowed = frozenset(allowed)
        super().__init__(
            f"Unsupported image type '{content_type}' (allowed: {', '.join(sorted(self.allowed))})"
        )


class TooLargeError(ValidationError):
    """An upload exceeds the configured byte ceiling."""

    def __init__(self, size: int, max_bytes: int) -> None:
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(f"Image is {size} bytes, limit is {max_bytes} bytes")


class DecodeError(ValidationError):
    """The uploaded bytes could not be read as an image."""


class EncodeError(VaultError):
    """Re-encoding an image produced no output."""


class DuplicateTagError(ValidationError):
    """A tag with the same name already exists for this owner."""


class NotFoundError(VaultError):
    """An owner-scoped lookup found nothing."""


class RemoteError(VaultError):
    """The hosted store, storage bucket or auth service reported a failure."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class PartialApplyError(VaultError):
    """A multi-step mutation failed after earlier steps were committed.

    Nothing is rolled back. ``completed`` lists the steps that did commit so the
    caller can report what was left behind.
    """

    def __init__(self, step: str, completed: list[str], cause: Exception) -> None:
        self.step = step
        self.completed = list(completed)
        self.cause = cause
        done = ", ".join(self.completed) or "nothing"
        super().__init__(f"Step '{step}' failed after {done} committed: {cause}")


class ThrottledError(VaultError):
    """An action was re-invoked inside its cooldown window and was dropped."""

    def __init__(self, key: str, retry_after: float) -> None:
        self.key = key
        self.retry_after = retry_after
        super().__init__("Please wait…")
