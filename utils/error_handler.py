"""Custom exception classes for the application."""


class AutoGraderError(Exception):
    """Base exception for all application-specific errors."""
    pass


class ConfigError(AutoGraderError):
    """Error related to configuration loading or values."""
    pass


class BrowserConnectionError(AutoGraderError):
    """Error attaching to the operator's browser or locating the grading tab."""
    pass


class PageSurfaceError(AutoGraderError):
    """An in-page evaluation failed (detached element, navigation mid-call, script error)."""
    pass


class FetchError(AutoGraderError):
    """A single re-fetch attempt of an image address failed."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class ScoringServiceError(AutoGraderError):
    """Error interacting with the external scoring service (backend or Gemini)."""

    def __init__(self, message: str, status_code: int | None = None, service: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.service = service

    def __str__(self) -> str:
        base = super().__str__()
        details = []
        if self.service:
            details.append(f"Service: {self.service}")
        if self.status_code:
            details.append(f"Status Code: {self.status_code}")
        if details:
            return f"{base} ({', '.join(details)})"
        return base


class GradingError(AutoGraderError):
    """The scoring service could not produce a usable score for an artifact."""
    pass


class UserCancelledError(AutoGraderError):
    """Error raised when the user cancels an operation."""
    pass
