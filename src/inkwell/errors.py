"""Inkwell error taxonomy.

Every error that can reach the chat transcript derives from InkwellError and
carries a short ``user_message`` suitable for rendering inline.

    InkwellError
    ├── InvalidInput
    │   └── DimensionMismatch
    ├── OperationInProgress
    ├── ConfirmationRequired
    ├── EntryImmutable
    ├── EntryNotActive
    ├── StoreInconsistency
    │   ├── EntryNotFound
    │   └── JournalNotFound
    ├── EmbeddingUnavailable
    └── ProviderError
        ├── NetworkError
        │   └── RequestTimeout
        ├── AuthError
        ├── QuotaExceeded
        └── InvalidRequest
"""

from __future__ import annotations


class InkwellError(Exception):
    """Base class for all Inkwell errors."""

    user_message = "Something went wrong."

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidInput(InkwellError):
    user_message = "That input can't be used."


class DimensionMismatch(InvalidInput):
    """Vector length differs from the store's configured dimensionality."""

    user_message = "The embedding has an unexpected size."

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected a vector of {expected} dimensions, got {actual}.")
        self.expected = expected
        self.actual = actual


class OperationInProgress(InkwellError):
    user_message = "Still working on the previous request. Please wait a moment."

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Another operation is already running for entry '{entry_id}'.")
        self.entry_id = entry_id


class ConfirmationRequired(InkwellError):
    user_message = "Please confirm before continuing."


class EntryImmutable(InkwellError):
    user_message = "This entry is finished and can no longer be changed."

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry '{entry_id}' is finalized and immutable.")
        self.entry_id = entry_id


class EntryNotActive(InkwellError):
    user_message = "Open this entry before writing to it."

    def __init__(self, entry_id: str, state: str) -> None:
        super().__init__(f"Entry '{entry_id}' is {state}, not active.")
        self.entry_id = entry_id
        self.state = state


class StoreInconsistency(InkwellError):
    """A referenced entity is missing or the stored data breaks an invariant."""

    user_message = "Your journal data looks inconsistent."


class EntryNotFound(StoreInconsistency):
    user_message = "That entry could not be found."

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry '{entry_id}' not found.")
        self.entry_id = entry_id


class JournalNotFound(StoreInconsistency):
    user_message = "That journal could not be found."

    def __init__(self, journal_id: str) -> None:
        super().__init__(f"Journal '{journal_id}' not found.")
        self.journal_id = journal_id


class EmbeddingUnavailable(InkwellError):
    user_message = "Related past entries could not be looked up right now."


class ProviderError(InkwellError):
    """Failure reported by the generation or embedding provider."""

    user_message = "The assistant could not respond."


class NetworkError(ProviderError):
    """Transient failure: connection problem, timeout or 5xx response."""

    user_message = "The assistant could not be reached. Check your connection and try again."


class RequestTimeout(NetworkError):
    user_message = "The assistant took too long to respond. Please try again."


class AuthError(ProviderError):
    user_message = "Your API key was rejected. Please re-enter it in settings."


class QuotaExceeded(ProviderError):
    user_message = "Your API quota is used up. Check your plan or try again later."


class InvalidRequest(ProviderError):
    user_message = "The assistant rejected the request."
