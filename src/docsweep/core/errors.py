class DocsweepError(Exception):
    """Base error for all user-facing docsweep exceptions."""


class ConfigurationError(DocsweepError):
    """Raised when configuration is invalid or incomplete."""


class ProjectNotInitializedError(DocsweepError):
    """Raised when .docsweep metadata is missing."""


class ValidationError(DocsweepError):
    """Raised when model invariants fail."""


class NotFoundError(DocsweepError):
    """Raised when a task or vector entry id is unknown."""


class InvalidTransitionError(DocsweepError):
    """Raised when a cleaning task update breaks the status lifecycle."""


class DimensionMismatchError(DocsweepError):
    """Raised when a vector length disagrees with the length recorded for its model."""


class ProviderUnavailableError(DocsweepError):
    """Raised when the embedding service cannot be reached or times out."""


class ModelNotFoundError(DocsweepError):
    """Raised when the embedding service does not know the requested model."""


class AlreadyRunningError(DocsweepError):
    """Raised when a batch run is requested while another one is in flight."""


class CleaningError(DocsweepError):
    """Raised when a cleaning transform cannot produce output for a task."""
