"""Exception hierarchy for the page pipeline.

Degradable errors are caught at the boundary of the component that raised
them and turned into defaults. Fatal errors reach the orchestrator, which
converts them into a single terminal error event.
"""


class PageEngineError(Exception):
    """Base class for all page engine errors."""

    fatal: bool = False


class InvalidQueryError(PageEngineError):
    """Query is empty or otherwise unusable."""

    fatal = True


class ContentGenerationError(PageEngineError):
    """Content model returned unusable output or could not be reached."""

    fatal = True


class PersistenceError(PageEngineError):
    """Page could not be stored."""

    fatal = True


class DeadlineExceededError(PageEngineError):
    """A remote call did not finish within its deadline."""

    def __init__(self, operation: str, seconds: float):
        super().__init__(f"{operation} exceeded deadline of {seconds:.1f}s")
        self.operation = operation
        self.seconds = seconds


class RetrievalError(PageEngineError):
    """Embedding or vector search failed."""


class LayoutSelectionError(PageEngineError):
    """Layout model failed or returned an unusable layout."""


class ImageSearchError(PageEngineError):
    """Image index lookup failed."""


class ImageSynthesisError(PageEngineError):
    """Image generation or upload failed for a background sub-task."""
