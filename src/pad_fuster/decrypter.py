from typing import Optional, Tuple

from structlog.typing import FilteringBoundLogger

from pad_fuster.blocks import make_blocks, unpad, xor
from pad_fuster.cracker import Cracker
from pad_fuster.errors import ConfigurationError, OracleExhausted
from pad_fuster.log import get_logger


class Decrypter:
    """Recovers the plaintext of a CBC ciphertext (IV || C1 || ... || Cn)."""

    def __init__(self, cracker: Cracker, block_size: int, *, log: Optional[FilteringBoundLogger] = None):
        self.cracker = cracker
        self.block_size = block_size
        self.log = get_logger("decrypter", log)

    async def decrypt(self, ciphertext: bytes) -> bytes:
        if len(ciphertext) % self.block_size != 0 or len(ciphertext) < 2 * self.block_size:
            raise ConfigurationError(
                f"Ciphertext must be a multiple of the block size ({self.block_size}) "
                f"and at least two blocks long, got {len(ciphertext)} bytes"
            )

        blocks = make_blocks(ciphertext, self.block_size)
        block_count = len(blocks) - 1  # Don't count the IV.

        plaintext = b""
        # Skip the first block (IV) and only decrypt actual ciphertext blocks.
        for block_index_n in range(1, len(blocks)):
            iv = blocks[block_index_n - 1]
            ciphertext_n = blocks[block_index_n]

            self.log.info(
                "processing block",
                block=f"{block_index_n}/{block_count}",
                ciphertext=ciphertext_n.hex(),
                iv=iv.hex(),
            )

            try:
                plain, intermediate = await self.decrypt_block(iv, ciphertext_n)
            except OracleExhausted as e:
                e.block_index = block_index_n
                raise

            self.log.info(
                "block decrypted",
                block=block_index_n,
                intermediate=intermediate.hex(),
                decrypted=plain.hex(),
                plaintext=plain.decode("utf-8", errors="replace"),
            )
            plaintext += plain

        return unpad(plaintext, self.block_size)

    async def decrypt_block(self, iv: bytes, ciphertext: bytes) -> Tuple[bytes, bytes]:
        # For CBC mode, plaintext = previous ciphertext block XOR intermediate.
        intermediate = await self.cracker.crack(ciphertext)
        return xor(iv, intermediate), intermediate
