"""Custom exception hierarchy for LoreKeeper.

All application exceptions inherit from :class:`LoreKeeperError`, which
carries an optional ``provider_name`` so error handlers can identify which
collaborator (e.g. "chromadb", "openai_embedding", "sqlite_knowledge")
caused the failure.

The hierarchy mirrors the knowledge-base pipeline:

    LoreKeeperError  (base -- catch-all for any lorekeeper error)
    +-- ValidationError          (bad caller input, nothing persisted)
    +-- NotFoundError            (source missing)
    +-- AlreadyDeletedError      (mutation on a soft-deleted source)
    +-- InvalidTransitionError   (lifecycle transition not allowed)
    +-- IntegrityError           (embedding / fragment count mismatch)
    +-- ExternalServiceError     (collaborator failure)
    |   +-- ParserError
    |   +-- EmbeddingError
    |   +-- VectorStoreError
    +-- RepositoryError          (relational store failure)
    +-- ConfigurationError       (startup / invalid config)

Orchestrators never wrap these: whatever a collaborator raises is what the
caller sees, so the original message survives end to end.
"""


class LoreKeeperError(Exception):
    """Base exception for all LoreKeeper errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which collaborator triggered the error.
    ``__str__`` prefixes the provider name in brackets, e.g.
    ``[chromadb] upsert failed``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller / domain errors
# ---------------------------------------------------------------------------

class ValidationError(LoreKeeperError):
    """Raised when caller input is malformed.  Nothing has been persisted."""

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(LoreKeeperError):
    """Raised when a source does not exist (or is not visible to the tenant)."""

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class AlreadyDeletedError(LoreKeeperError):
    """Raised when a mutation targets a source that is already soft-deleted."""

    def __init__(
        self,
        message: str = "Source is already deleted",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidTransitionError(LoreKeeperError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        message: str = "Invalid status transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IntegrityError(LoreKeeperError):
    """Raised when fragments and embeddings cannot be aligned one-to-one.

    Always indicates a collaborator contract violation (e.g. an embedder
    returning fewer vectors than it was given texts).  The message states
    both counts.
    """

    def __init__(
        self,
        message: str = "Fragment / embedding count mismatch",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External collaborator errors
# ---------------------------------------------------------------------------

class ExternalServiceError(LoreKeeperError):
    """Raised when an external collaborator (parser, embedder, vector store) fails."""

    def __init__(
        self,
        message: str = "External service failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ParserError(ExternalServiceError):
    """Raised when a document buffer cannot be turned into text."""

    def __init__(
        self,
        message: str = "Document parsing failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(ExternalServiceError):
    """Raised when an embedding provider fails.  No partial results are returned."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(ExternalServiceError):
    """Raised when a vector-store upsert, search or delete fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------

class RepositoryError(LoreKeeperError):
    """Raised when the relational store rejects or fails an operation."""

    def __init__(
        self,
        message: str = "Repository operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(LoreKeeperError):
    """Raised when a required configuration value is missing or invalid.

    Typically raised at startup, e.g. a chunk overlap that is not smaller
    than the chunk size, or no embedding provider being reachable.
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
