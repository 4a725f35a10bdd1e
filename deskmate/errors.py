from __future__ import annotations


class DeskmateError(Exception):
    """Base class for every error the engine raises on purpose."""


class CorruptStateError(DeskmateError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"stored collection `{key}` is corrupt: {reason}")
        self.key = key
        self.reason = reason


class NotFoundError(DeskmateError, LookupError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class ValidationError(DeskmateError, ValueError):
    pass
