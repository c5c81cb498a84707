"""Store-backed pipeline stages."""


class PipelineError(Exception):
    """Base error for pipeline failures."""


class PrefetchError(PipelineError):
    """Raised when categorization data cannot be loaded for a batch."""
