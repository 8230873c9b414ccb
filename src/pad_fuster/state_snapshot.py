from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True, slots=True)
class ByteSnapshot:
    """Immutable record of one recovered intermediate byte."""

    block_size: int
    byte_index_i: int
    pad_length_k: int
    byte_value_g: int
    intermediate_byte: int
    requests: int

    # Partial intermediate value, None where the byte is still unknown.
    intermediate: Tuple[Optional[int], ...] = field(default_factory=tuple)

    @property
    def complete(self) -> bool:
        return self.byte_index_i == 0
