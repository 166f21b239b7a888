"""Exception types for the media processor.

Every failure the pipeline can report is a subclass of ProcessorError so that
the worker loop can turn it into a failed job with a readable reason.
Anything outside this hierarchy is a programming error and propagates.
"""


class ProcessorError(Exception):
    """Base exception for processor errors."""

    retryable: bool = True


class ConfigurationError(ProcessorError):
    """Raised when configuration is missing or invalid.

    Configuration is validated once at startup; this error is never raised
    for an individual job.
    """

    retryable = False


class ProbeError(ProcessorError):
    """Raised when ffprobe is unavailable or cannot read a file."""


class ClassificationError(ProcessorError):
    """Raised when a file's stream shape matches no media category.

    Re-running the same file produces the same answer, so the job is not
    retryable.

    Attributes:
        path: The file that could not be classified.
    """

    retryable = False

    def __init__(self, path: str, detail: str) -> None:
        """Initialize the exception.

        Args:
            path: The file that could not be classified.
            detail: What was observed in the probe output.
        """
        self.path = path
        super().__init__(f"Unrecognized media {path}: {detail}")


class EncodeError(ProcessorError):
    """Raised when an encoder invocation fails for one ladder step.

    Attributes:
        label: Quality step label.
        returncode: Encoder exit code, or None if it never produced one.
    """

    def __init__(
        self, label: str, message: str, returncode: int | None = None
    ) -> None:
        self.label = label
        self.returncode = returncode
        super().__init__(f"Encode of step '{label}' failed: {message}")


class ManifestError(ProcessorError):
    """Raised when the streaming manifest cannot be assembled."""


class DocumentError(ProcessorError):
    """Raised when a PDF document cannot be rendered or read."""


class ServiceError(ProcessorError):
    """Base exception for failures talking to an external HTTP service.

    Attributes:
        service: Short service name used in log messages.
        status_code: HTTP status code if a response was received.
    """

    def __init__(
        self, service: str, message: str, status_code: int | None = None
    ) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class TranscriptionError(ServiceError):
    """Raised when the transcription service cannot produce a transcript."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__("transcription", message, status_code)


class TranslationError(ServiceError):
    """Raised when a single translation request fails.

    These are handled per cue and never fail a job.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__("translation", message, status_code)


class JobCancelledError(ProcessorError):
    """Raised when a job observes a cancellation request."""

    retryable = False
