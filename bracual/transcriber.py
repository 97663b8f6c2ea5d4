"""Audio transcription through the Groq OpenAI-compatible API."""

import logging
import mimetypes
from typing import Any, List, Optional

import httpx

from . import transfer_encoder
from .config import TranscriptionConfig
from .errors import SummaryError, TranscriptionError, TransferError
from .models import TranscriptSegment, TranscriptionResult
from .pipelines import TranscriptionService

logger = logging.getLogger(__name__)

RESPONSE_FORMAT = "verbose_json"
DEFAULT_SPEAKER = "Speaker"
DEFAULT_ERROR_MESSAGE = "Transcription failed"
SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant. "
    "Please provide a concise summary of the following transcript."
)


def format_timestamp(seconds: float) -> str:
    """Format an offset in seconds as MM:SS."""
    mm = int(seconds // 60)
    ss = int(seconds % 60)
    return f"{mm:02d}:{ss:02d}"


def build_segments(payload: Any) -> List[TranscriptSegment]:
    """Convert a verbose_json transcription response into segments.

    Falls back to a single 00:00 segment built from the full text when the
    response carries no segments.

    Raises:
        TranscriptionError: If the response is malformed.
    """
    if not isinstance(payload, dict):
        raise TranscriptionError("Malformed transcription response")

    segments = []
    try:
        for seg in payload.get("segments") or []:
            segments.append(
                TranscriptSegment(
                    speaker=DEFAULT_SPEAKER,
                    timestamp=format_timestamp(float(seg["start"])),
                    text=str(seg["text"]).strip(),
                )
            )
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptionError(f"Malformed transcription segment: {e}") from e

    text = payload.get("text")
    if not segments and text:
        segments.append(
            TranscriptSegment(
                speaker=DEFAULT_SPEAKER, timestamp="00:00", text=str(text).strip()
            )
        )

    return segments


def _error_message(response: httpx.Response) -> str:
    """Extract the service's error message from a failed response."""
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        message = None
    return message or response.text or DEFAULT_ERROR_MESSAGE


_AUDIO_EXTENSIONS = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/webm": ".webm",
}


def _upload_filename(mime_type: str) -> str:
    mime_type = (mime_type or "").lower()
    extension = (
        _AUDIO_EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".wav"
    )
    return f"audio{extension}"


class GroqTranscriber(TranscriptionService):
    """Transcribes audio and summarizes the transcript with Groq models."""

    def __init__(
        self,
        config: TranscriptionConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the transcriber.

        Args:
            config: Transcription service configuration.
            transport: Optional httpx transport, mainly for tests.
        """
        self.config = config
        self._transport = transport

    def _client(self, api_key: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self.config.timeout_s,
            transport=self._transport,
        )

    async def transcribe(
        self, encoded_audio: str, mime_type: str
    ) -> TranscriptionResult:
        """Transcribe base64 audio and attach a summary.

        Raises:
            TranscriptionError: If the request fails or the response is malformed.
        """
        api_key = self.config.computed_api_key
        if not api_key:
            raise TranscriptionError("No transcription API key configured")

        try:
            audio = transfer_encoder.decode(encoded_audio)
        except TransferError as e:
            raise TranscriptionError(str(e)) from e

        async with self._client(api_key) as client:
            payload = await self._request_transcription(client, audio, mime_type)
            segments = build_segments(payload)
            logger.info(
                f"Transcribed {len(audio)} bytes into {len(segments)} segment(s)"
            )

            full_text = " ".join(s.text for s in segments)
            summary = self.config.fallback_summary
            if len(full_text) > self.config.summary_min_chars:
                try:
                    summary = await self._summarize(client, full_text) or summary
                except SummaryError as e:
                    logger.warning(f"Summary generation failed, using fallback: {e}")
                except Exception as e:
                    logger.exception(f"Unexpected error during summary, using fallback: {e}")

        return TranscriptionResult(segments=tuple(segments), summary=summary)

    async def _request_transcription(
        self, client: httpx.AsyncClient, audio: bytes, mime_type: str
    ) -> Any:
        files = {"file": (_upload_filename(mime_type), audio, mime_type)}
        data = {"model": self.config.model, "response_format": RESPONSE_FORMAT}

        try:
            resp = await client.post("/audio/transcriptions", files=files, data=data)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(f"Transcription request failed ({e.response.status_code}): {message}")
            raise TranscriptionError(message) from e
        except httpx.HTTPError as e:
            logger.error(f"Transcription request failed: {e}")
            raise TranscriptionError(str(e) or DEFAULT_ERROR_MESSAGE) from e
        except ValueError as e:
            raise TranscriptionError("Malformed transcription response") from e

    async def _summarize(self, client: httpx.AsyncClient, text: str) -> Optional[str]:
        """Request a concise summary of the transcript.

        Raises:
            SummaryError: On any request or response failure.
        """
        payload = {
            "model": self.config.summary_model,
            "messages": [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            "temperature": self.config.summary_temperature,
            "max_tokens": self.config.summary_max_tokens,
        }

        try:
            resp = await client.post("/chat/completions", json=payload)
            resp.raise_for_status()
            return resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            raise SummaryError(str(e) or type(e).__name__) from e
