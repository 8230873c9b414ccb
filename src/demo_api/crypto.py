import os
import pathlib
from enum import Enum

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


BLOCK_SIZE = 16


class CipherSuite(str, Enum):
    AES_128_CBC = "AES-128-CBC"
    AES_256_CBC = "AES-256-CBC"

    def __str__(self):
        return self.value


KEY_SIZES = {
    CipherSuite.AES_128_CBC: 16,
    CipherSuite.AES_256_CBC: 32,
}


def get_key_dir() -> pathlib.Path:
    key_dir = pathlib.Path(os.environ.get("PAD_FUSTER_DEMO_KEY_DIR", pathlib.Path(__file__).parent / "keys"))
    key_dir.mkdir(parents=True, exist_ok=True)
    return key_dir


def _load_or_create(path: pathlib.Path, size: int) -> bytes:
    if path.exists():
        return path.read_bytes()
    value = os.urandom(size)
    path.write_bytes(value)
    return value


def get_key(suite: CipherSuite) -> bytes:
    """Returns the key for the given cipher suite.
    If the key file does not exist, it creates a new key and saves it to the key file."""
    suite = CipherSuite(suite)
    return _load_or_create(get_key_dir() / f"{suite}.key", KEY_SIZES[suite])


def get_iv(suite: CipherSuite, random: bool = True) -> bytes:
    """Returns a random IV, or the static IV stored beside the key."""
    suite = CipherSuite(suite)
    if random:
        return os.urandom(BLOCK_SIZE)
    return _load_or_create(get_key_dir() / f"{suite}.iv", BLOCK_SIZE)


def _check_key(suite: CipherSuite, key: bytes) -> None:
    suite = CipherSuite(suite)
    if len(key) != KEY_SIZES[suite]:
        raise ValueError(f"{suite} needs a {KEY_SIZES[suite]} byte key, got {len(key)}")


def encrypt(suite: CipherSuite, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """ Encrypts the plaintext with PKCS#7 padding and prepends the IV. """
    _check_key(suite, key)
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return iv + encryptor.update(padded) + encryptor.finalize()


def decrypt(suite: CipherSuite, key: bytes, ciphertext: bytes) -> bytes:
    """ Decrypts IV || ciphertext and strips the padding.
    Raises ValueError("Invalid padding bytes.") when the padding is malformed.
    """
    if len(ciphertext) < 2 * BLOCK_SIZE or len(ciphertext) % BLOCK_SIZE != 0:
        raise ValueError(f"Ciphertext must be a multiple of {BLOCK_SIZE} bytes and include the IV")
    _check_key(suite, key)

    iv = ciphertext[:BLOCK_SIZE]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext[BLOCK_SIZE:]) + decryptor.finalize()

    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    return unpadder.update(padded) + unpadder.finalize()
