"""Errors raised while submitting a generation request.

All of them are terminal for the current attempt: nothing here is retried.
The message of each exception is shown to the user as-is.
"""


class SubmissionError(RuntimeError):
    """Base class for every failure surfaced to the presentation layer."""


class UnknownModel(SubmissionError):
    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Unknown model: {model_id}")


class HttpError(SubmissionError):
    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"HTTP error! status: {status}, message: {body}")


class NetworkFailure(SubmissionError):
    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Network failure: {cause}")


class RateLimitExceeded(SubmissionError):
    def __init__(self, retry_after_ms: int):
        self.retry_after_ms = retry_after_ms
        minutes = max(1, -(-retry_after_ms // 60000))
        super().__init__(f"Rate limit exceeded. Please try again in {minutes} minute(s).")


class SubmissionInProgress(SubmissionError):
    def __init__(self):
        super().__init__("A generation request is already in progress.")
