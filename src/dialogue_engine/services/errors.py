"""Service-layer exceptions."""


class ProgressLoadError(Exception):
    """Raised when stored dialogue progress cannot be read or is malformed."""


class ProgressSaveError(Exception):
    """Raised when dialogue progress cannot be written."""
