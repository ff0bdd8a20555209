import re

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_error_message(message: str | None) -> str:
    """Strip control characters so binary payloads leaking into an error
    message can't corrupt logs or JSON output."""
    if not message:
        return "Unknown error occurred"
    return _CONTROL_CHARS.sub("", message)


class GenerationError(Exception):
    """Base class for every failure surfaced by the generation pipeline."""

    def __init__(self, message: str):
        super().__init__(sanitize_error_message(message))

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(GenerationError):
    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class ProviderError(GenerationError):
    def __init__(self, message: str, detail: object | None = None):
        self.detail = detail
        super().__init__(message)


class SafetyFilterError(ProviderError):
    def __init__(self, reasons: list[str] | None = None):
        self.reasons = list(reasons or [])
        message = "content safety rejection"
        if self.reasons:
            message = f"{message}: {'; '.join(self.reasons)}"
        super().__init__(message, detail=self.reasons)


class PollTimeoutError(GenerationError):
    def __init__(self, elapsed_seconds: float, max_wait_seconds: float):
        self.elapsed_seconds = elapsed_seconds
        self.max_wait_seconds = max_wait_seconds
        super().__init__(
            f"Generation timed out after {elapsed_seconds:.1f}s "
            f"(max wait {max_wait_seconds:.0f}s)"
        )


class TransientNetworkError(GenerationError):
    pass


class UploadError(GenerationError):
    def __init__(self, message: str, last_error: BaseException | None = None):
        self.last_error = last_error
        super().__init__(message)


class ToolUnavailableError(GenerationError):
    pass


class PostProcessError(GenerationError):
    pass
