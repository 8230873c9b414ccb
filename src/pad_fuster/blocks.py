import secrets
from typing import List

from pad_fuster.errors import ConfigurationError, InvalidPadding

MIN_BLOCK_SIZE = 4
MAX_BLOCK_SIZE = 64


def make_blocks(data: bytes, block_size: int) -> List[bytes]:
    """Break the data into blocks of block_size bytes."""
    if len(data) % block_size != 0:
        raise ValueError(f"data length {len(data)} is not a multiple of block size {block_size}")
    return [bytes(data[i:i + block_size]) for i in range(0, len(data), block_size)]


def pad(data: bytes, block_size: int) -> bytes:
    """Append N bytes of value N. A full block is added when data is already aligned."""
    n = block_size - (len(data) % block_size)
    return bytes(data) + bytes([n]) * n


def unpad(data: bytes, block_size: int) -> bytes:
    """Strip the padding from the plaintext, validating every padding byte."""
    if not data:
        raise InvalidPadding("Invalid padding: empty plaintext")

    n = data[-1]
    if n == 0 or n > block_size or n > len(data):
        raise InvalidPadding(f"Invalid padding: trailing byte {n:#04x}")

    # The trailing byte itself is N; check the N-1 bytes before it.
    for i in range(2, n + 1):
        if data[-i] != n:
            raise InvalidPadding(f"Invalid padding: byte {len(data) - i} is {data[-i]:#04x}, expected {n:#04x}")

    return bytes(data[:-n])


def xor(a: bytes, b: bytes) -> bytes:
    """XOR two buffers of the same length."""
    if len(a) != len(b):
        raise ValueError(f"cannot xor buffers of different lengths ({len(a)} != {len(b)})")
    return bytes(x ^ y for x, y in zip(a, b))


def random_block(block_size: int) -> bytes:
    return secrets.token_bytes(block_size)


def detect_block_size(sample_size: int) -> int:
    """Largest power of two in [4, 64] that divides the sample size."""
    if sample_size <= 0 or sample_size % MIN_BLOCK_SIZE != 0:
        raise ConfigurationError(
            f"Encrypted sample ({sample_size} bytes) is not a multiple of the minimum block size"
        )

    block_size = MIN_BLOCK_SIZE
    while block_size < MAX_BLOCK_SIZE and sample_size % (block_size * 2) == 0:
        block_size *= 2
    return block_size


def hex_block(block: bytes) -> str:
    return " ".join(f"{b:02x}" for b in block)
