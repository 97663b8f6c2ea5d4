"""Chunked base64 transport encoding with progress reporting."""

import asyncio
import base64
import binascii
import io
import logging
from typing import BinaryIO, Optional, Union

from .errors import InvalidPayloadError, TransferError
from .models import DEFAULT_MIME_TYPE
from .pipelines import NullProgressSink, ProgressSink

logger = logging.getLogger(__name__)

# Must stay a multiple of 3 so per-chunk base64 output concatenates cleanly
DEFAULT_CHUNK_SIZE = 3 * 64 * 1024

DATA_URL_DELIMITER = ","

Payload = Union[bytes, bytearray, memoryview, BinaryIO]


def _open_payload(payload: Payload) -> BinaryIO:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return io.BytesIO(payload)
    if hasattr(payload, "read"):
        return payload
    raise TransferError(f"Cannot read payload of type {type(payload).__name__}.")


def _payload_size(payload: Payload, stream: BinaryIO) -> Optional[int]:
    if isinstance(payload, (bytes, bytearray)):
        return len(payload)
    if isinstance(payload, memoryview):
        return payload.nbytes
    try:
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
        return end - position
    except (OSError, AttributeError, ValueError):
        return None


def _data_url(mime_type: str, body: str) -> str:
    return f"data:{mime_type};base64,{body}"


async def encode_data_url(
    payload: Payload,
    progress: Optional[ProgressSink] = None,
    mime_type: str = DEFAULT_MIME_TYPE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Encode a payload as a base64 data URL.

    Progress is reported after every chunk, proportional to bytes consumed.

    Raises:
        TransferError: If the payload cannot be read.
    """
    if chunk_size <= 0 or chunk_size % 3:
        raise ValueError("chunk_size must be a positive multiple of 3")

    progress = progress or NullProgressSink()
    stream = _open_payload(payload)
    total = _payload_size(payload, stream)

    parts = []
    consumed = 0
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            if not isinstance(chunk, (bytes, bytearray)):
                raise TransferError("Payload stream did not return bytes.")
            parts.append(base64.b64encode(chunk).decode("ascii"))
            consumed += len(chunk)
            if total:
                progress.report(round(min(consumed, total) / total * 100))
            # Yield so large payloads do not starve the event loop
            await asyncio.sleep(0)
    except (OSError, ValueError) as e:
        raise TransferError(f"File reading failed: {e}") from e

    progress.report(100)
    logger.debug(f"Encoded {consumed} bytes as base64 ({mime_type})")
    return _data_url(mime_type, "".join(parts))


async def encode(
    payload: Payload,
    progress: Optional[ProgressSink] = None,
    mime_type: str = DEFAULT_MIME_TYPE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Encode a payload to base64 text for transport.

    Raises:
        TransferError: If the payload cannot be read.
        InvalidPayloadError: If the encoded data URL carries no body delimiter.
    """
    data_url = await encode_data_url(payload, progress, mime_type, chunk_size)
    if DATA_URL_DELIMITER not in data_url:
        raise InvalidPayloadError("Invalid audio data")
    return data_url.split(DATA_URL_DELIMITER, 1)[1]


def decode(text: str) -> bytes:
    """Decode transport text back to bytes.

    Raises:
        TransferError: If the text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TransferError(f"Invalid base64 payload: {e}") from e
