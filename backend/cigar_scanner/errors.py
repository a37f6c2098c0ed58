"""
Exceptions raised by the recognition pipeline.

Backend failures are split by how the orchestrator reacts to them:
BackendUnavailable advances to the next transport or model,
BackendRejected stops the pipeline and reaches the caller unchanged.
"""

from typing import Optional

CONFIGURATION_CHECKLIST = (
    "Please check:\n"
    "1. GOOGLE_API_KEY is configured\n"
    "2. The Generative Language API is enabled for the project\n"
    "3. The API key has permission to use the model\n"
    "4. Verify the key at https://aistudio.google.com/app/apikey"
)

# Substrings the Generative Language API uses for missing or unsupported models
UNAVAILABLE_MARKERS = (
    "not found",
    "404",
    "is not found for api version",
    "not supported",
)


class RecognitionError(Exception):
    """Base class for recognition pipeline errors."""


class ConfigurationError(RecognitionError):
    """Credentials or required settings are missing."""


class BackendUnavailable(RecognitionError):
    """The model does not exist or does not support generateContent."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class ParseError(BackendUnavailable):
    """The model answered, but not with the JSON we asked for."""


class BackendRejected(RecognitionError):
    """Quota, permission, or any other failure that is not worth retrying."""

    def __init__(self, message: str, model: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class AllBackendsFailedError(RecognitionError):
    """Every candidate model was unavailable."""

    def __init__(self, last_error: Optional[Exception], attempted: Optional[list] = None):
        self.last_error = last_error
        self.attempted = list(attempted or [])
        detail = str(last_error) if last_error else "no models to try"
        super().__init__(
            f"All models unavailable. Last error: {detail}\n\n{CONFIGURATION_CHECKLIST}"
        )


def is_unavailable_message(message: str) -> bool:
    """Check whether an error message means 'model not found/unsupported'."""
    lowered = (message or "").lower()
    return any(marker in lowered for marker in UNAVAILABLE_MARKERS)
