"""Tests for the PCM resampler/encoder."""

import io
import math
import shutil
import struct
from unittest.mock import patch

import ffmpeg
import numpy as np
import pytest
import soundfile as sf

from bracual.audio_resampler import (
    TARGET_SAMPLE_RATE,
    WAV_HEADER_SIZE,
    compress_audio,
    decode_audio,
    encode_wav,
    output_length,
    render_mono,
    resample_to_wav,
)
from bracual.errors import DecodeError, EncodingError
from bracual.pipelines import CallbackProgressSink


def make_wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples ([n] or [n, channels]) as a 16-bit WAV file."""
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def parse_header(wav: bytes) -> dict:
    fields = struct.unpack("<4sI4s4sIHHIIHH4sI", wav[:WAV_HEADER_SIZE])
    keys = [
        "riff", "riff_size", "wave", "fmt", "fmt_size", "format_tag",
        "channels", "sample_rate", "byte_rate", "block_align",
        "bits_per_sample", "data", "data_size",
    ]
    return dict(zip(keys, fields))


@pytest.mark.parametrize(
    "source_rate,n_frames",
    [(44100, 44100), (44100, 22051), (48000, 12345), (16000, 1), (22050, 99999)],
)
def test_output_sample_count(source_rate, n_frames):
    """Output holds ceil(duration * 8000) samples and the header agrees."""
    t = np.arange(n_frames) / source_rate
    samples = 0.3 * np.sin(2 * np.pi * 440 * t)

    wav = resample_to_wav(make_wav_bytes(samples, source_rate), "audio/wav")

    expected = math.ceil(n_frames / source_rate * TARGET_SAMPLE_RATE)
    header = parse_header(wav)
    assert header["data_size"] == 2 * expected
    assert len(wav) == WAV_HEADER_SIZE + 2 * expected


def test_output_length_is_exact():
    assert output_length(44100, 44100) == 8000
    assert output_length(44101, 44100) == 8001
    assert output_length(0, 44100) == 0
    assert output_length(3, 16000) == 2


def test_header_layout():
    """The 44-byte header matches the PCM mono 16-bit profile."""
    wav = encode_wav(np.zeros(10, dtype=np.float32), 8000)

    header = parse_header(wav)
    assert header["riff"] == b"RIFF"
    assert header["riff_size"] == 32 + 20
    assert header["wave"] == b"WAVE"
    assert header["fmt"] == b"fmt "
    assert header["fmt_size"] == 16
    assert header["format_tag"] == 1
    assert header["channels"] == 1
    assert header["sample_rate"] == 8000
    assert header["byte_rate"] == 16000
    assert header["block_align"] == 2
    assert header["bits_per_sample"] == 16
    assert header["data"] == b"data"
    assert header["data_size"] == 20


def test_asymmetric_scaling_and_clamping():
    """Negative samples scale by 32768, others by 32767, after clamping."""
    wav = encode_wav([-1.0, 1.0, 0.0, 2.0, -2.0, 0.5, -0.5], 8000)

    pcm = np.frombuffer(wav[WAV_HEADER_SIZE:], dtype="<i2")
    assert pcm.tolist() == [-32768, 32767, 0, 32767, -32768, 16383, -16384]


def test_encode_rejects_non_finite_samples():
    with pytest.raises(EncodingError):
        encode_wav([0.0, float("nan")], 8000)


def test_progress_checkpoints():
    """Progress is reported at 20, 50, 80 and 100 in order."""
    reports = []
    samples = np.zeros(16000, dtype=np.float32)

    resample_to_wav(
        make_wav_bytes(samples, 16000), "audio/wav", CallbackProgressSink(reports.append)
    )

    assert reports == [20, 50, 80, 100]


def test_decode_error_on_garbage():
    reports = []
    with pytest.raises(DecodeError):
        resample_to_wav(b"definitely not audio" * 100, "audio/mpeg", CallbackProgressSink(reports.append))
    # Nothing is reported before decoding succeeds
    assert reports == []


def test_decode_error_on_empty_input():
    with pytest.raises(DecodeError):
        decode_audio(b"", "audio/wav")


def test_decode_returns_frames_and_rate():
    stereo = np.zeros((800, 2), dtype=np.float32)
    frames, rate = decode_audio(make_wav_bytes(stereo, 22050))

    assert rate == 22050
    assert frames.shape == (800, 2)
    assert frames.dtype == np.float32


def test_mixdown_average_and_first():
    """Average mixes all channels; first keeps channel 0."""
    frames = np.column_stack(
        [np.full(100, 0.5, dtype=np.float32), np.full(100, -0.5, dtype=np.float32)]
    )

    averaged = render_mono(frames, TARGET_SAMPLE_RATE, mixdown="average")
    first = render_mono(frames, TARGET_SAMPLE_RATE, mixdown="first")

    np.testing.assert_allclose(averaged, 0.0)
    np.testing.assert_allclose(first, 0.5)


def test_render_mono_unknown_mixdown():
    with pytest.raises(ValueError):
        render_mono(np.zeros((10, 1)), 8000, mixdown="loudest")


def test_render_mono_preserves_low_frequency_tone():
    """A 200Hz tone survives resampling from 48kHz."""
    source_rate = 48000
    t = np.arange(source_rate) / source_rate
    tone = 0.5 * np.sin(2 * np.pi * 200 * t)

    out = render_mono(tone[:, np.newaxis], source_rate)

    assert len(out) == TARGET_SAMPLE_RATE
    # Ignore filter edge effects
    assert np.max(np.abs(out[500:-500])) == pytest.approx(0.5, abs=0.02)


def test_render_mono_empty():
    out = render_mono(np.zeros((0, 2), dtype=np.float32), 44100)
    assert len(out) == 0


@pytest.mark.asyncio
async def test_compress_audio_matches_sync_and_reports_progress():
    """The async form yields the same bytes and checkpoints."""
    t = np.arange(32000) / 32000
    data = make_wav_bytes(0.2 * np.sin(2 * np.pi * 300 * t), 32000)
    reports = []

    wav = await compress_audio(data, "audio/wav", CallbackProgressSink(reports.append))

    assert wav == resample_to_wav(data, "audio/wav")
    assert reports == [20, 50, 80, 100]


@pytest.mark.asyncio
async def test_compress_audio_decode_error():
    with pytest.raises(DecodeError):
        await compress_audio(b"\x00\x01\x02" * 1000, "audio/ogg")


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)


def make_m4a_bytes(tmp_path, samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples as AAC in an MP4 container."""
    wav_path = tmp_path / "source.wav"
    m4a_path = tmp_path / "source.m4a"
    sf.write(wav_path, samples, sample_rate, subtype="PCM_16")
    (
        ffmpeg
        .input(str(wav_path))
        .output(str(m4a_path), acodec="aac", audio_bitrate="128k")
        .overwrite_output()
        .run(quiet=True)
    )
    return m4a_path.read_bytes()


@requires_ffmpeg
def test_decode_m4a_through_ffmpeg(tmp_path):
    """Formats soundfile cannot open are decoded with ffmpeg."""
    t = np.arange(2 * 44100) / 44100
    tone = 0.5 * np.sin(2 * np.pi * 440 * t)
    data = make_m4a_bytes(tmp_path, np.column_stack([tone, tone]), 44100)

    frames, rate = decode_audio(data, "audio/mp4")

    assert rate == 44100
    assert frames.shape[1] == 2
    assert frames.dtype == np.float32
    # AAC encoder delay and padding shift the length slightly
    assert abs(frames.shape[0] - len(t)) < 4096
    assert 0.3 < np.abs(frames).max() <= 1.0


@requires_ffmpeg
def test_resample_m4a_to_wav(tmp_path):
    t = np.arange(3 * 48000) / 48000
    data = make_m4a_bytes(tmp_path, 0.3 * np.sin(2 * np.pi * 300 * t), 48000)

    wav = resample_to_wav(data, "audio/mp4")

    header = parse_header(wav)
    assert header["sample_rate"] == TARGET_SAMPLE_RATE
    assert header["channels"] == 1
    assert abs(header["data_size"] // 2 - 3 * TARGET_SAMPLE_RATE) < 1000


def test_decode_error_without_ffmpeg():
    """A missing ffmpeg binary surfaces as a DecodeError."""
    with patch("bracual.audio_resampler.ffmpeg.probe", side_effect=FileNotFoundError("ffprobe")):
        with pytest.raises(DecodeError, match="ffmpeg is not installed"):
            decode_audio(b"\x00\x00\x00\x20ftypM4A " + b"\x00" * 64, "audio/mp4")


def test_decode_error_on_low_probe_score():
    probe = {"format": {"probe_score": 1}, "streams": [{"codec_type": "audio"}]}
    with patch("bracual.audio_resampler.ffmpeg.probe", return_value=probe):
        with pytest.raises(DecodeError, match="unrecognised format"):
            decode_audio(b"not audio at all" * 10, "audio/mp4")
