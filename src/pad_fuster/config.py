from dataclasses import dataclass
from typing import Optional

from structlog.typing import FilteringBoundLogger

from pad_fuster.blocks import detect_block_size
from pad_fuster.cracker import DEFAULT_CONCURRENCY
from pad_fuster.errors import ConfigurationError
from pad_fuster.log import get_logger


def _decode_hex(name: str, value: Optional[str], block_size: int) -> Optional[bytes]:
    if value is None:
        return None
    try:
        decoded = bytes.fromhex(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} parameter is not valid hex: {e}") from e
    if len(decoded) != block_size:
        raise ConfigurationError(f"Size of {name} parameter must match block size ({block_size})")
    return decoded


@dataclass(frozen=True, slots=True)
class AttackConfig:
    """Validated attack settings. Built once, before any oracle traffic."""

    block_size: int
    concurrency: int = DEFAULT_CONCURRENCY
    ciphertext: Optional[bytes] = None
    intermediate: Optional[bytes] = None
    verify_last_byte: bool = False
    strict: bool = False

    @classmethod
    def build(
        cls,
        sample_size: int,
        *,
        block_size: int = 0,
        concurrency: int = DEFAULT_CONCURRENCY,
        ciphertext_hex: Optional[str] = None,
        intermediate_hex: Optional[str] = None,
        verify_last_byte: bool = False,
        strict: bool = False,
        log: Optional[FilteringBoundLogger] = None,
    ) -> "AttackConfig":
        log = get_logger("config", log)

        if block_size == 0:
            block_size = detect_block_size(sample_size)
            log.warning("detected block size", block_size=block_size)
        elif block_size < 0:
            raise ConfigurationError(f"Block size must be positive, got {block_size}")
        elif sample_size % block_size != 0:
            raise ConfigurationError("Encrypted sample is not a multiple of the block size")

        if concurrency < 1:
            raise ConfigurationError(f"Concurrency must be a positive integer, got {concurrency}")

        if intermediate_hex is not None and ciphertext_hex is None:
            raise ConfigurationError("The intermediate parameter requires the ciphertext parameter")

        return cls(
            block_size=block_size,
            concurrency=concurrency,
            ciphertext=_decode_hex("ciphertext", ciphertext_hex, block_size),
            intermediate=_decode_hex("intermediate", intermediate_hex, block_size),
            verify_last_byte=verify_last_byte,
            strict=strict,
        )
