import base64
import binascii
import re
from typing import Literal, Optional, Tuple, Union

from structlog.typing import FilteringBoundLogger

from pad_fuster.errors import ConfigurationError
from pad_fuster.log import get_logger

type SampleEncoding = Literal[
    "b64",
    "b64_urlsafe",
    "hex",
    "raw",
]

ENCODINGS = ("b64", "b64_urlsafe", "hex", "raw")

HEX_PATTERN = re.compile(r"^(?:[0-9a-fA-F]{2})+$")
B64_PATTERN = re.compile(r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?$")
B64_URLSAFE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")


def _as_bytes(
    data: Union[str, bytes, bytearray, memoryview],
    *,
    encoding: str = "utf-8",
) -> bytes:
    """Normalize values to type bytes."""
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    return data.encode(encoding)


def b64_encode(
    data: Union[str, bytes, bytearray, memoryview],
    *,
    urlsafe: bool = False,
    text_encoding: str = "utf-8",
) -> str:
    """Accepts str/bytes/etc and return a base64 string (standard or URL-safe)."""
    raw = _as_bytes(data, encoding=text_encoding)
    fn = base64.urlsafe_b64encode if urlsafe else base64.b64encode
    return fn(raw).decode("ascii")


def b64_decode(b64_text: str, *, urlsafe: bool = False) -> bytes:
    """Decodes either standard or URL-safe b64. Tolerates missing '=' padding."""
    missing = len(b64_text) % 4
    if missing:
        b64_text += "=" * (4 - missing)

    if urlsafe:
        return base64.urlsafe_b64decode(b64_text)
    try:
        return base64.b64decode(b64_text, validate=True)
    except binascii.Error:
        return base64.urlsafe_b64decode(b64_text)


def detect_encoding(sample: str) -> SampleEncoding:
    if HEX_PATTERN.match(sample):
        return "hex"
    if B64_PATTERN.match(sample):
        return "b64"
    if B64_URLSAFE_PATTERN.match(sample):
        return "b64_urlsafe"
    raise ConfigurationError("Cannot auto-detect sample encoding; set it explicitly")


def decode_sample(
    sample: str,
    encoding: str = "auto",
    *,
    log: Optional[FilteringBoundLogger] = None,
) -> Tuple[bytes, SampleEncoding]:
    """Decode the sample and return it with the encoding that was used."""
    log = get_logger("encoding", log)

    if encoding == "auto":
        encoding = detect_encoding(sample)
        log.warning("detected sample encoding", encoding=encoding)

    try:
        if encoding == "b64":
            return b64_decode(sample), encoding
        elif encoding == "b64_urlsafe":
            return b64_decode(sample, urlsafe=True), encoding
        elif encoding == "hex":
            return bytes.fromhex(sample), encoding
        elif encoding == "raw":
            return sample.encode("utf-8"), encoding
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"Sample is not valid {encoding}: {e}") from e

    raise ConfigurationError(f"Invalid encoding: {encoding}")


def encode(data: bytes, encoding: SampleEncoding) -> str:
    if encoding == "b64":
        return b64_encode(data)
    elif encoding == "b64_urlsafe":
        return b64_encode(data, urlsafe=True)
    elif encoding == "hex":
        return data.hex()
    elif encoding == "raw":
        return data.decode("utf-8", errors="replace")
    raise ConfigurationError(f"Invalid encoding: {encoding}")
