"""
Audio processor backed by soundfile (libsndfile) and numpy.
"""

import io
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import soundfile as sf

from ..transforms import AssetKind, Pipeline, TransformKind
from .base import Processor, ProcessorError


ENCODERS = {
    "wav": ("WAV", "PCM_16"),
    "ogg": ("OGG", "VORBIS"),
}


@dataclass
class AudioState:
    samples: np.ndarray  # shape (frames, channels), float64 in [-1, 1]
    sample_rate: int
    output: Optional[bytes] = None


def _read(data: bytes):
    try:
        return sf.read(io.BytesIO(data), dtype="float64", always_2d=True)
    except (RuntimeError, ValueError, TypeError) as e:
        raise ProcessorError(f"Cannot decode audio: {e}")


def normalize_peak(samples: np.ndarray, peak: float = 0.95) -> np.ndarray:
    """Scale so the largest absolute sample equals peak. Silence is returned unchanged."""
    current = float(np.max(np.abs(samples))) if samples.size else 0.0
    if current == 0.0:
        return samples
    return samples * (peak / current)


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resampling, channel by channel."""
    if source_rate == target_rate or samples.shape[0] == 0:
        return samples
    frames = samples.shape[0]
    out_frames = max(1, int(round(frames * target_rate / source_rate)))
    positions = np.linspace(0, frames - 1, out_frames)
    source_index = np.arange(frames)
    channels = [np.interp(positions, source_index, samples[:, ch]) for ch in range(samples.shape[1])]
    return np.stack(channels, axis=1)


class AudioProcessor(Processor):
    """Normalize, resample and encode audio clips."""

    kind = AssetKind.AUDIO

    def handlers(self):
        return {
            TransformKind.NORMALIZE: self._normalize,
            TransformKind.RESAMPLE: self._resample,
            TransformKind.ENCODE: self._encode,
        }

    def decode(self, data: bytes, pipeline: Pipeline) -> AudioState:
        samples, rate = _read(data)
        return AudioState(samples, rate)

    def finish(self, state: AudioState, pipeline: Pipeline) -> bytes:
        if state.output is None:
            raise ProcessorError("Audio pipeline has no encode step")
        return state.output

    def _normalize(self, state: AudioState, step) -> AudioState:
        return AudioState(normalize_peak(state.samples, step.peak), state.sample_rate)

    def _resample(self, state: AudioState, step) -> AudioState:
        if step.sample_rate <= 0:
            raise ProcessorError(f"Invalid sample rate {step.sample_rate}", step.kind)
        samples = resample_linear(state.samples, state.sample_rate, step.sample_rate)
        return AudioState(samples, step.sample_rate)

    def _encode(self, state: AudioState, step) -> AudioState:
        if step.format not in ENCODERS:
            raise ProcessorError(f"Unsupported audio format: {step.format}", step.kind)
        container, subtype = ENCODERS[step.format]
        buffer = io.BytesIO()
        # Clip so float rounding never wraps when quantizing to PCM
        samples = np.clip(state.samples, -1.0, 1.0)
        try:
            sf.write(buffer, samples, state.sample_rate, format=container, subtype=subtype)
        except (RuntimeError, ValueError, TypeError) as e:
            raise ProcessorError(f"Cannot encode {step.format}: {e}", step.kind)
        return AudioState(state.samples, state.sample_rate, buffer.getvalue())


def audio_info(data: bytes) -> Dict[str, Any]:
    """Channel count, sample rate, duration and container details."""
    try:
        info = sf.info(io.BytesIO(data))
    except (RuntimeError, ValueError, TypeError) as e:
        raise ProcessorError(f"Cannot read audio header: {e}")
    duration = info.frames / info.samplerate if info.samplerate else 0.0
    return {
        "channels": info.channels,
        "sample_rate": info.samplerate,
        "frames": info.frames,
        "duration": duration,
        "format": info.format,
        "subtype": info.subtype,
        "bitrate_kbps": (len(data) * 8 / duration / 1000) if duration else 0.0,
    }
