from __future__ import annotations


class RecordStoreError(Exception):
    """Base class for every error reported back to the caller as a 500."""


class MalformedInput(RecordStoreError):
    pass


class NotFound(RecordStoreError):
    def __init__(self, key: int) -> None:
        super().__init__(f"item with id {key} not found")
        self.key = key


class UnsupportedMethod(RecordStoreError):
    def __init__(self, method: str) -> None:
        super().__init__("unsupported method")
        self.method = method


class SerializationFailure(RecordStoreError):
    pass


class RequestTimeout(RecordStoreError):
    pass


class IdSpaceExhausted(RecordStoreError):
    pass
