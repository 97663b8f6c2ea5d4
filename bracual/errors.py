"""Exceptions raised by the bracual pipeline."""


class BracualError(Exception):
    """Base exception for bracual."""

    pass


class SizeLimitExceeded(BracualError):
    """A submitted file is larger than the accepted input size."""

    def __init__(self, name: str, size: int, limit: int):
        self.name = name
        self.size = size
        self.limit = limit
        super().__init__(f"File exceeds {limit // (1024 * 1024)}MB limit.")


class CompressionError(BracualError):
    """Resampling the input audio failed."""

    pass


class DecodeError(CompressionError):
    """The input bytes could not be decoded as audio."""

    pass


class EncodingError(BracualError):
    """A payload could not be encoded."""

    pass


class TransferError(EncodingError):
    """The payload could not be read for transport encoding."""

    pass


class InvalidPayloadError(TransferError):
    """Transport encoding produced output without the expected delimiter."""

    pass


class TranscriptionError(BracualError):
    """The transcription service failed or returned a malformed response."""

    pass


class SummaryError(BracualError):
    """Summary generation failed. Never fails a task."""

    pass


class InvalidTransitionError(BracualError):
    """A task update would move its status backwards."""

    pass


class SessionError(BracualError):
    """The session could not be read, written or validated."""

    pass
