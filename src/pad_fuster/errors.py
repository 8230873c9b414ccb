from typing import Optional


class PadFusterError(Exception):
    """Base class for every error raised by pad_fuster."""


class ConfigurationError(PadFusterError):
    """Invalid setup, raised before any oracle traffic."""


class OracleTransportFailure(PadFusterError):
    """The oracle could not deliver an attempt after exhausting its retries."""


class InvalidPadding(PadFusterError):
    pass


class OracleExhausted(PadFusterError):
    """No guess produced a valid padding decision for a byte position."""

    def __init__(self, byte_index: int, requests: int, block_index: Optional[int] = None):
        self.byte_index = byte_index
        self.requests = requests
        self.block_index = block_index
        super().__init__(byte_index, requests, block_index)

    def __str__(self) -> str:
        where = f"byte {self.byte_index}"
        if self.block_index is not None:
            where = f"block {self.block_index}, {where}"
        return f"Oracle returned false for all attempts ({where}, {self.requests} requests)"
