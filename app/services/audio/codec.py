"""Telephony audio codec helpers.

Pure functions for turning linear PCM into 8 kHz G.711 mu-law, the only
format the Twilio media stream accepts, plus container stripping for
providers that wrap raw audio in a WAV header.
"""
import sys
from array import array
from typing import Sequence, List

SAMPLE_RATE = 8000

# mu-law encoding of a zero-amplitude sample, used for padding
SILENCE_BYTE = 0xFF

MULAW_BIAS = 0x84
MULAW_CLIP = 32635

_RIFF_HEADER_SIZE = 12
_CHUNK_HEADER_SIZE = 8


def encode_linear_to_mulaw(sample: int) -> int:
    """Encode one signed 16-bit PCM sample as a mu-law byte."""
    sample = max(-32768, min(32767, int(sample)))

    sign = 0x80 if sample < 0 else 0
    magnitude = min(-sample if sample < 0 else sample, MULAW_CLIP) + MULAW_BIAS

    exponent = 7
    exp_mask = 0x4000
    while (magnitude & exp_mask) == 0 and exponent > 0:
        exponent -= 1
        exp_mask >>= 1

    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def pcm16_to_samples(pcm_bytes: bytes) -> array:
    """Interpret little-endian 16-bit PCM bytes as signed samples.

    A trailing odd byte is dropped.
    """
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    samples = array("h")
    samples.frombytes(bytes(pcm_bytes[:usable]))
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def decimate(samples: Sequence[int], source_rate: int, target_rate: int) -> List[int]:
    """
    Downsample by keeping every Nth sample.

    Nearest-neighbour decimation with no anti-alias filter. It trades quality
    for latency and is good enough for narrowband speech.
    """
    if source_rate == target_rate or not samples:
        return list(samples)
    if target_rate <= 0 or source_rate < target_rate:
        raise ValueError(
            f"Cannot decimate from {source_rate} Hz to {target_rate} Hz"
        )
    step = max(1, round(source_rate / target_rate))
    return list(samples[::step])


def pcm16_to_mulaw(pcm_bytes: bytes, source_rate: int, target_rate: int = SAMPLE_RATE) -> bytes:
    """Decimate 16-bit PCM to the telephony rate and mu-law encode it."""
    samples = decimate(pcm16_to_samples(pcm_bytes), source_rate, target_rate)
    return bytes(encode_linear_to_mulaw(s) for s in samples)


def strip_wav_container(data: bytes) -> bytes:
    """
    Return the payload of the ``data`` chunk if ``data`` is a RIFF/WAVE file.

    Anything that is not a WAV container comes back unchanged, as does a
    truncated or malformed header. A ``data`` chunk whose declared size
    runs past the buffer (streamed WAVs use a placeholder size) yields the
    rest of the buffer.
    """
    if len(data) < _RIFF_HEADER_SIZE or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        return data

    offset = _RIFF_HEADER_SIZE
    while offset + _CHUNK_HEADER_SIZE <= len(data):
        chunk_id = bytes(data[offset:offset + 4])
        chunk_size = int.from_bytes(data[offset + 4:offset + 8], "little")
        body_start = offset + _CHUNK_HEADER_SIZE

        if chunk_id == b"data":
            body_end = min(body_start + chunk_size, len(data))
            return bytes(data[body_start:body_end])

        # chunks are word aligned
        offset = body_start + chunk_size + (chunk_size & 1)

    return data
