from typing import Optional, Tuple

from structlog.typing import FilteringBoundLogger

from pad_fuster.blocks import make_blocks, pad, random_block, xor
from pad_fuster.cracker import Cracker
from pad_fuster.errors import ConfigurationError, OracleExhausted
from pad_fuster.log import get_logger


class Encrypter:
    """Forges a ciphertext that decrypts to chosen plaintext, without the key.

    The chain is built backwards: each plaintext block is paired with an
    anchor ciphertext block, the anchor's intermediate value is cracked and
    the IV that turns it into the plaintext becomes the anchor for the
    previous block.

    ciphertext: anchor for the last block instead of a random one.
    intermediate: known intermediate value of `ciphertext`, which skips
        cracking the last block (resume).
    """

    def __init__(
        self,
        cracker: Cracker,
        block_size: int,
        *,
        ciphertext: Optional[bytes] = None,
        intermediate: Optional[bytes] = None,
        log: Optional[FilteringBoundLogger] = None,
    ):
        if ciphertext is not None and len(ciphertext) != block_size:
            raise ConfigurationError("Size of ciphertext parameter must match block size")
        if intermediate is not None:
            if ciphertext is None:
                raise ConfigurationError("An intermediate value requires its ciphertext block")
            if len(intermediate) != block_size:
                raise ConfigurationError("Size of intermediate parameter must match block size")

        self.cracker = cracker
        self.block_size = block_size
        self.ciphertext = ciphertext
        self.intermediate = intermediate
        self.log = get_logger("encrypter", log)

    async def encrypt(self, plaintext: bytes) -> bytes:
        blocks = make_blocks(pad(plaintext, self.block_size), self.block_size)
        result = b""

        if self.ciphertext is not None and self.intermediate is not None:
            plain = blocks.pop()
            iv = xor(plain, self.intermediate)
            self.log.info(
                "using pre-computed ciphertext and intermediate values",
                block=len(blocks) + 1,
                plaintext=plain.hex(),
                ciphertext=self.ciphertext.hex(),
                intermediate=self.intermediate.hex(),
                iv=iv.hex(),
            )
            result = self.ciphertext
        elif self.ciphertext is not None:
            iv = self.ciphertext
        else:
            iv = random_block(self.block_size)

        # The IV of each block is the ciphertext of the block before it.
        while blocks:
            block_index_n = len(blocks)
            plain = blocks.pop()
            anchor = iv

            self.log.info(
                "processing block",
                block=block_index_n,
                plaintext=plain.hex(),
                ciphertext=anchor.hex(),
            )

            try:
                iv, intermediate = await self.encrypt_block(plain, anchor)
            except OracleExhausted as e:
                e.block_index = block_index_n
                raise

            self.log.info(
                "block encrypted",
                block=block_index_n,
                intermediate=intermediate.hex(),
                iv=iv.hex(),
            )
            result = anchor + result

        return iv + result

    async def encrypt_block(self, plain: bytes, ciphertext: bytes) -> Tuple[bytes, bytes]:
        intermediate = await self.cracker.crack(ciphertext)
        return xor(plain, intermediate), intermediate
