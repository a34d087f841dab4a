from __future__ import annotations

from typing import Any, NoReturn


class UpstreamAPIError(RuntimeError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message


class MetadataNotFoundError(LookupError):
    """Raised when the metadata repository is asked for an id it does not hold."""


class UnhandledCaseError(RuntimeError):
    pass


def assert_never(value: Any, message: str | None = None) -> NoReturn:
    raise UnhandledCaseError(message or f"Unhandled case: {value!r}")
