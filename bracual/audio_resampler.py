"""Resampling of arbitrary input audio to compact mono 8kHz PCM WAV."""

import asyncio
import io
import logging
import math
import os
import struct
import tempfile
from typing import Optional, Tuple

import ffmpeg
import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from .errors import DecodeError, EncodingError
from .pipelines import NullProgressSink, ProgressSink

logger = logging.getLogger(__name__)

# Output profile used for speech transcription
TARGET_SAMPLE_RATE = 8000
NUM_CHANNELS = 1
BITS_PER_SAMPLE = 16
BLOCK_ALIGN = NUM_CHANNELS * BITS_PER_SAMPLE // 8

WAV_HEADER_SIZE = 44
WAV_MIME_TYPE = "audio/wav"

# Asymmetric float to s16 scaling
FLOAT32_TO_INT16_NEG = 32768.0
FLOAT32_TO_INT16_POS = 32767.0

MIXDOWN_AVERAGE = "average"
MIXDOWN_FIRST = "first"

# Progress checkpoints
PROGRESS_DECODED = 20
PROGRESS_RESAMPLING = 50
PROGRESS_RESAMPLED = 80
PROGRESS_DONE = 100

# ffmpeg itself warns about detections at or below this score
MIN_PROBE_SCORE = 26


def _decode_with_soundfile(data: bytes) -> Tuple[np.ndarray, int]:
    frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    return frames, int(sample_rate)


def _decode_with_ffmpeg(data: bytes) -> Tuple[np.ndarray, int]:
    """Decode formats libsndfile lacks (AAC/M4A, WebM, ...) through ffmpeg.

    MP4 containers may keep their index at the end of the file, so the input
    goes through a seekable temporary file rather than a pipe.

    Raises:
        DecodeError: If ffmpeg is missing or cannot decode the input.
    """
    fd, tmp_name = tempfile.mkstemp(prefix="bracual-", suffix=".audio")
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)

        try:
            info = ffmpeg.probe(tmp_name)
            score = int(info.get("format", {}).get("probe_score", 0))
            if score < MIN_PROBE_SCORE:
                raise DecodeError(f"unrecognised format (probe score {score})")
            stream = next(
                s for s in info.get("streams", []) if s.get("codec_type") == "audio"
            )
            sample_rate = int(stream["sample_rate"])
            channels = int(stream["channels"])

            raw, _ = (
                ffmpeg
                .input(tmp_name)
                .output("pipe:", format="f32le", acodec="pcm_f32le", ac=channels, ar=sample_rate)
                .run(capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            raise DecodeError(f"ffmpeg failed: {stderr or e}") from e
        except StopIteration as e:
            raise DecodeError("no audio stream found") from e
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"unreadable stream info: {e}") from e
        except FileNotFoundError as e:
            raise DecodeError("ffmpeg is not installed") from e
    finally:
        os.unlink(tmp_name)

    if channels < 1 or sample_rate <= 0:
        raise DecodeError("no audio channels found")

    frames = np.frombuffer(raw, dtype="<f4")
    frames = frames[: len(frames) - len(frames) % channels].reshape(-1, channels)
    return frames.astype(np.float32), sample_rate


def decode_audio(data: bytes, mime_type: Optional[str] = None) -> Tuple[np.ndarray, int]:
    """Decode an audio byte buffer.

    soundfile handles WAV, FLAC, OGG and MP3 in memory; anything it cannot
    open is handed to ffmpeg.

    Args:
        data: Encoded audio bytes.
        mime_type: Declared mime type, used for diagnostics only.

    Returns:
        Tuple of (float32 frames shaped [n_frames, channels], sample rate).

    Raises:
        DecodeError: If the bytes cannot be decoded as audio.
    """
    if not data:
        raise DecodeError("Unable to decode audio data: input is empty.")

    try:
        frames, sample_rate = _decode_with_soundfile(data)
    except (sf.SoundFileError, RuntimeError, TypeError, ValueError) as e:
        logger.debug(f"soundfile cannot open {mime_type or 'input'} ({e}), trying ffmpeg")
        try:
            frames, sample_rate = _decode_with_ffmpeg(data)
        except DecodeError as ffmpeg_error:
            raise DecodeError(
                f"Unable to decode audio data ({mime_type or 'unknown'}): {ffmpeg_error}"
            ) from e

    if frames.ndim != 2 or frames.shape[1] < 1 or sample_rate <= 0:
        raise DecodeError("Unable to decode audio data: no audio channels found.")

    logger.debug(
        f"Decoded {frames.shape[0]} frames, {frames.shape[1]} channel(s) at {sample_rate}Hz"
    )
    return frames, int(sample_rate)


def output_length(n_frames: int, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE) -> int:
    """Number of samples covering the source duration at the target rate, rounded up."""
    return -(-n_frames * target_rate // source_rate)


def render_mono(
    frames: np.ndarray,
    source_rate: int,
    target_rate: int = TARGET_SAMPLE_RATE,
    mixdown: str = MIXDOWN_AVERAGE,
) -> np.ndarray:
    """Reduce frames to one channel and resample to the target rate.

    The result holds exactly ceil(duration * target_rate) samples.
    """
    frames = np.asarray(frames, dtype=np.float32)
    if frames.ndim == 1:
        frames = frames[:, np.newaxis]

    if mixdown == MIXDOWN_FIRST:
        mono = frames[:, 0]
    elif mixdown == MIXDOWN_AVERAGE:
        mono = frames.mean(axis=1)
    else:
        raise ValueError(f"Unknown mixdown mode: {mixdown}")

    n_out = output_length(len(mono), source_rate, target_rate)
    if n_out == 0:
        return np.zeros(0, dtype=np.float32)

    if source_rate == target_rate:
        return mono.astype(np.float32)

    g = math.gcd(source_rate, target_rate)
    resampled = resample_poly(mono, target_rate // g, source_rate // g)
    # resample_poly yields ceil(n * up / down) samples, which equals n_out
    if len(resampled) > n_out:
        resampled = resampled[:n_out]
    elif len(resampled) < n_out:
        resampled = np.pad(resampled, (0, n_out - len(resampled)))
    return resampled.astype(np.float32)


def encode_wav(samples, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Serialize float samples into a 16-bit mono PCM WAV file.

    Raises:
        EncodingError: If the samples contain non-finite values.
    """
    samples = np.asarray(samples, dtype=np.float64).ravel()
    if not np.all(np.isfinite(samples)):
        raise EncodingError("Cannot encode WAV: samples contain NaN or infinity.")

    data_size = len(samples) * BLOCK_ALIGN
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        32 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM
        NUM_CHANNELS,
        sample_rate,
        sample_rate * BLOCK_ALIGN,
        BLOCK_ALIGN,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )

    clipped = np.clip(samples, -1.0, 1.0)
    scaled = np.where(
        clipped < 0, clipped * FLOAT32_TO_INT16_NEG, clipped * FLOAT32_TO_INT16_POS
    )
    pcm = np.trunc(scaled).astype("<i2")
    return header + pcm.tobytes()


def resample_to_wav(
    data: bytes,
    mime_type: Optional[str] = None,
    progress: Optional[ProgressSink] = None,
    mixdown: str = MIXDOWN_AVERAGE,
) -> bytes:
    """Decode, resample and encode in one synchronous call.

    Reports progress at 20 (decoded), 50 (resampling), 80 (resampled) and 100.
    """
    progress = progress or NullProgressSink()

    frames, source_rate = decode_audio(data, mime_type)
    progress.report(PROGRESS_DECODED)

    progress.report(PROGRESS_RESAMPLING)
    samples = render_mono(frames, source_rate, TARGET_SAMPLE_RATE, mixdown)
    progress.report(PROGRESS_RESAMPLED)

    wav = encode_wav(samples, TARGET_SAMPLE_RATE)
    progress.report(PROGRESS_DONE)
    return wav


async def compress_audio(
    data: bytes,
    mime_type: Optional[str] = None,
    progress: Optional[ProgressSink] = None,
    mixdown: str = MIXDOWN_AVERAGE,
) -> bytes:
    """Asynchronous form of resample_to_wav.

    CPU-bound steps run in worker threads; progress is reported from the
    calling event loop thread only.
    """
    progress = progress or NullProgressSink()

    frames, source_rate = await asyncio.to_thread(decode_audio, data, mime_type)
    progress.report(PROGRESS_DECODED)

    progress.report(PROGRESS_RESAMPLING)
    samples = await asyncio.to_thread(
        render_mono, frames, source_rate, TARGET_SAMPLE_RATE, mixdown
    )
    progress.report(PROGRESS_RESAMPLED)

    wav = await asyncio.to_thread(encode_wav, samples, TARGET_SAMPLE_RATE)
    progress.report(PROGRESS_DONE)

    logger.info(
        f"Compressed {len(data)} bytes of {mime_type or 'audio'} to "
        f"{len(wav)} bytes of {TARGET_SAMPLE_RATE}Hz mono WAV"
    )
    return wav
