"""Exception types raised by the manual QA pipeline."""


class ManualQAError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ManualQAError):
    """Required configuration (e.g. an API key) is missing or invalid."""


class StorageError(ManualQAError):
    """The persisted vector snapshot cannot be read or the store is unusable."""


class StoreBusyError(StorageError):
    """The vector store is being rebuilt and cannot serve queries."""


class DimensionMismatchError(ManualQAError):
    """An embedding does not have the dimension of the stored embeddings.

    Usually means ingestion and querying used different embedding models.
    """

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}. "
            "Rebuild the index with the current embedding model."
        )


class UnresolvedAnswerError(ManualQAError):
    """The model did not produce a final text answer."""


class EmptyResponseError(UnresolvedAnswerError):
    """The model returned neither text nor a tool call."""
