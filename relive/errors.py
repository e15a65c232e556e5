# errors.py


class ReliveError(RuntimeError):
    """Base class for every failure raised by the generation pipeline."""


class StoryValidationError(ReliveError):
    """Input rejected before any provider request was issued."""


class TransientProviderError(ReliveError):
    """Provider asked us to slow down or is temporarily unavailable."""

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class RateLimitError(TransientProviderError):
    pass


class ServiceUnavailableError(TransientProviderError):
    pass


class ScriptGenerationError(ReliveError):
    """The Director could not produce a usable script."""


class PanelGenerationError(ReliveError):
    """The Illustrator got no image back for a panel."""


class StorageError(ReliveError):
    pass


class CaptureError(ReliveError):
    pass
