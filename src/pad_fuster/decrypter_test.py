import asyncio

import pytest

from pad_fuster.blocks import make_blocks, xor
from pad_fuster.cracker import Cracker
from pad_fuster.decrypter import Decrypter
from pad_fuster.errors import ConfigurationError, InvalidPadding, OracleExhausted

IV = bytes.fromhex("101112131415161718191a1b1c1d1e1f")


def make_decrypter(oracle, block_size: int = 16, **kwargs) -> Decrypter:
    return Decrypter(Cracker(oracle, **kwargs), block_size)


class TestDecrypt:
    """Test suite for Decrypter.decrypt"""

    def test_single_block(self, aes_oracle):
        """A two block sample (IV and one ciphertext block) decrypts to the known plaintext"""
        ciphertext = aes_oracle.encrypt(IV, b"Hello, world!")

        plaintext = asyncio.run(make_decrypter(aes_oracle).decrypt(ciphertext))

        assert plaintext == b"Hello, world!"
        assert len(plaintext) == 16 - 3

    def test_multiple_blocks(self, aes_oracle):
        """Each block is cracked against its predecessor and the padding is stripped once"""
        expected = b"aaaaaaaaaaaaaaaabbbbbbbbbbbbbbbbcccccccccccccccc"
        ciphertext = aes_oracle.encrypt(IV, expected)

        plaintext = asyncio.run(make_decrypter(aes_oracle, verify_last_byte=True).decrypt(ciphertext))

        assert plaintext == expected

    def test_full_padding_block(self, aes_oracle):
        """An aligned plaintext ends in a whole block of 0x10 bytes, which is removed"""
        expected = b"0123456789abcdef"
        ciphertext = aes_oracle.encrypt(IV, expected)
        assert len(ciphertext) == 48

        plaintext = asyncio.run(make_decrypter(aes_oracle, verify_last_byte=True).decrypt(ciphertext))

        assert plaintext == expected

    @pytest.mark.parametrize("block_size", [4, 8, 32, 64])
    def test_other_block_sizes(self, hash_oracle, block_size):
        oracle = hash_oracle(block_size)
        ciphertext = bytes(range(block_size * 3))

        decrypter = make_decrypter(oracle, block_size, verify_last_byte=True)
        blocks = make_blocks(ciphertext, block_size)

        # Arbitrary ciphertext rarely ends in valid padding, so check the blocks one at a time.
        for n in range(1, len(blocks)):
            plain, intermediate = asyncio.run(decrypter.decrypt_block(blocks[n - 1], blocks[n]))
            assert intermediate == oracle.intermediate(blocks[n])
            assert plain == xor(blocks[n - 1], intermediate)

    def test_invalid_final_padding(self, aes_oracle):
        """Recovered plaintext without valid padding is reported, not returned"""
        ciphertext = aes_oracle.encrypt_raw(IV, b"A" * 15 + b"\x00")

        with pytest.raises(InvalidPadding):
            asyncio.run(make_decrypter(aes_oracle).decrypt(ciphertext))

    @pytest.mark.parametrize("size", [0, 16, 20, 33])
    def test_bad_length(self, aes_oracle, size):
        """Unaligned or single block input is rejected before any oracle query"""
        with pytest.raises(ConfigurationError):
            asyncio.run(make_decrypter(aes_oracle).decrypt(bytes(size)))
        assert aes_oracle.requests == 0

    def test_exhausted_reports_block(self, always_false_oracle):
        with pytest.raises(OracleExhausted) as exc_info:
            asyncio.run(make_decrypter(always_false_oracle).decrypt(bytes(32)))

        assert exc_info.value.block_index == 1
        assert exc_info.value.byte_index == 15
        assert "block 1, byte 15" in str(exc_info.value)


def test_decrypt_block(aes_oracle):
    """decrypt_block returns the plaintext block and the intermediate value"""
    ciphertext = aes_oracle.encrypt(IV, b"Hello, world!")

    plain, intermediate = asyncio.run(make_decrypter(aes_oracle).decrypt_block(IV, ciphertext[16:]))

    assert plain == b"Hello, world!\x03\x03\x03"
    assert intermediate == aes_oracle.intermediate(ciphertext[16:])
