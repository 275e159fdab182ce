"""Exception types raised by the knowledge engine."""


class KnowledgeEngineError(Exception):
    """Base class for all knowledge engine errors."""


class InvalidURLError(KnowledgeEngineError, ValueError):
    """A URL could not be parsed into an absolute http(s) URL."""


class NotFoundError(KnowledgeEngineError, LookupError):
    """A requested record does not exist."""


class InvalidStateError(KnowledgeEngineError, ValueError):
    """The operation is not allowed in the record's current state."""


class PageFetchError(KnowledgeEngineError):
    """A single page could not be fetched (HTTP error, timeout, transport)."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url
        self.message = message


class EmbeddingError(KnowledgeEngineError, ValueError):
    """The embedding provider could not produce usable vectors."""


class RepositoryError(KnowledgeEngineError):
    """A store operation returned no data where some was expected."""
