"""Error taxonomy for the data-flow core."""

from __future__ import annotations

from collections.abc import Mapping, Sequence


class DokumaError(Exception):
    """Base class for errors raised by dokuma."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DokumaError):
    """Form values failed schema validation. Never reaches the network."""

    def __init__(self, errors: Mapping[str, Sequence[str]]) -> None:
        self.errors: dict[str, list[str]] = {
            field: list(messages) for field, messages in errors.items()
        }
        fields = ", ".join(sorted(self.errors)) or "form"
        super().__init__(f"Invalid values for: {fields}")


class HttpError(DokumaError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500

    def __repr__(self) -> str:
        return f"HttpError(status={self.status}, message={self.message!r})"


class NetworkError(DokumaError):
    """The request never completed (offline, timeout, DNS)."""


def is_transient(error: BaseException) -> bool:
    """Whether a failed read is worth retrying."""
    if isinstance(error, NetworkError):
        return True
    return isinstance(error, HttpError) and error.is_server_error
