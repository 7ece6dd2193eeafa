"""Custom exceptions for tablelog."""

from __future__ import annotations

from typing import Any


class TablelogError(Exception):
    """Base exception for all tablelog errors."""

    pass


class ConfigurationError(TablelogError):
    """Raised when configuration is invalid or missing."""

    pass


class SchemaError(TablelogError):
    """Raised when the log table schema cannot be applied."""

    def __init__(self, message: str, *, version: int | None = None) -> None:
        super().__init__(message)
        self.version = version


class RepositoryError(TablelogError):
    """Raised when reading log records from storage fails."""

    pass


class StructuredError(TablelogError):
    """Error value carrying one or more codes, messages and attached data.

    Instances can be raised like any exception, but they are mostly passed
    around as values inside a record's ``context``; the repository flattens
    them to ``{"codes", "messages", "data"}`` before serializing.
    """

    def __init__(
        self,
        code: str | None = None,
        message: str = "",
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self._errors: dict[str, list[str]] = {}
        self._data: dict[str, Any] = {}
        if code is not None:
            self.add(code, message, data)

    def add(self, code: str, message: str, data: Any = None) -> None:
        """Attach another error code (and optional data) to this error."""

        self._errors.setdefault(code, []).append(message)
        if data is not None:
            self._data[code] = data

    @property
    def codes(self) -> list[str]:
        return list(self._errors)

    @property
    def messages(self) -> list[str]:
        return [message for messages in self._errors.values() for message in messages]

    @property
    def data(self) -> dict[str, Any]:
        return dict(self._data)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable representation of the error."""

        return {
            "codes": self.codes,
            "messages": self.messages,
            "data": self.data,
        }
