"""Errors raised by the bolus tracker core."""


class StoreError(Exception):
    """Base error carrying a human-readable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProfileMissingError(StoreError):
    """Raised when an operation needs a profile and none is configured."""

    def __init__(
        self, message: str = "Set up your profile before saving meals"
    ) -> None:
        super().__init__(message)


class InvalidDataError(StoreError):
    """Raised when user input or a decoded document fails validation."""


class IOFailureError(StoreError):
    """Raised when the file system cannot be read or written."""


class GlucoseFeedError(Exception):
    """Raised when the glucose feed cannot provide a reading."""
