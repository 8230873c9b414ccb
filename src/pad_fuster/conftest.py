import asyncio
import hashlib
from typing import List, Optional, Tuple

import pytest
import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from pad_fuster.oracle import OracleResult

TEST_KEY = bytes.fromhex("000102030405060708090a0b0c0d0e0f")


def has_valid_padding(plain: bytes) -> bool:
    unpadder = padding.PKCS7(len(plain) * 8).unpadder()
    try:
        unpadder.update(plain)
        unpadder.finalize()
    except ValueError:
        return False
    return True


class ReferenceOracle:
    """Padding oracle over a known decryption function. Records every query."""

    def __init__(self):
        self.calls: List[Tuple[bytes, bytes, bool]] = []

    def intermediate(self, block: bytes) -> bytes:
        raise NotImplementedError

    @property
    def requests(self) -> int:
        return len(self.calls)

    async def test(self, iv: bytes, block: bytes) -> OracleResult:
        # Yield so concurrent attempts actually interleave.
        await asyncio.sleep(0)
        plain = bytes(a ^ b for a, b in zip(iv, self.intermediate(block)))
        valid = has_valid_padding(plain)
        self.calls.append((iv, block, valid))
        return OracleResult(valid=valid, debug_info=f"valid={valid}")


class AesCbcOracle(ReferenceOracle):
    """The target: AES-CBC with PKCS#7 padding under a fixed key."""

    def __init__(self, key: bytes = TEST_KEY):
        super().__init__()
        self.key = key

    def intermediate(self, block: bytes) -> bytes:
        decryptor = Cipher(algorithms.AES(self.key), modes.ECB()).decryptor()
        return decryptor.update(block) + decryptor.finalize()

    def encrypt(self, iv: bytes, plaintext: bytes) -> bytes:
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).encryptor()
        return iv + encryptor.update(padded) + encryptor.finalize()

    def encrypt_raw(self, iv: bytes, plaintext: bytes) -> bytes:
        encryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).encryptor()
        return iv + encryptor.update(plaintext) + encryptor.finalize()

    def decrypt_raw(self, ciphertext: bytes) -> bytes:
        decryptor = Cipher(algorithms.AES(self.key), modes.CBC(ciphertext[:16])).decryptor()
        return decryptor.update(ciphertext[16:]) + decryptor.finalize()


class HashBlockOracle(ReferenceOracle):
    """A keyed stand-in for a block cipher of any block size."""

    def __init__(self, block_size: int, key: bytes = TEST_KEY):
        super().__init__()
        self.block_size = block_size
        self.key = key

    def intermediate(self, block: bytes) -> bytes:
        return hashlib.shake_256(self.key + block).digest(self.block_size)


class FixedIntermediateOracle(ReferenceOracle):
    """Every block decrypts to the same intermediate value."""

    def __init__(self, intermediate: bytes):
        super().__init__()
        self._intermediate = intermediate

    def intermediate(self, block: bytes) -> bytes:
        return self._intermediate


class AlwaysFalseOracle:
    def __init__(self):
        self.requests = 0

    async def test(self, iv: bytes, block: bytes) -> OracleResult:
        await asyncio.sleep(0)
        self.requests += 1
        return OracleResult(valid=False)


@pytest.fixture
def aes_oracle() -> AesCbcOracle:
    return AesCbcOracle()


@pytest.fixture
def hash_oracle():
    def make(block_size: int, key: Optional[bytes] = None) -> HashBlockOracle:
        return HashBlockOracle(block_size, key or TEST_KEY)
    return make


@pytest.fixture
def fixed_oracle():
    return FixedIntermediateOracle


@pytest.fixture
def always_false_oracle() -> AlwaysFalseOracle:
    return AlwaysFalseOracle()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # The CLI points structlog at the runner's stderr, which is closed afterwards.
    structlog.reset_defaults()
