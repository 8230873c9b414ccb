import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from demo_api import crypto
from demo_api.api import app
from pad_fuster.cracker import Cracker
from pad_fuster.decrypter import Decrypter
from pad_fuster.encoding import b64_decode, b64_encode
from pad_fuster.encrypter import Encrypter
from pad_fuster.oracle import CallableOracle


@pytest.fixture(autouse=True)
def key_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("PAD_FUSTER_DEMO_KEY_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def client():
    return TestClient(app)


def tamper(ciphertext: bytes, index: int, mask: int) -> bytes:
    data = bytearray(ciphertext)
    data[index] ^= mask
    return bytes(data)


class TestDemoEndpoints:
    """Test suite for the demo ciphertext endpoints"""

    def test_demo1(self, client):
        response = client.get("/api/demo1")

        assert response.status_code == 200
        body = response.json()
        assert body["alg"] == "AES-128-CBC"
        ciphertext = b64_decode(body["ciphertext_b64"])
        assert len(ciphertext) == 32
        assert body["ciphertext_hex"] == ciphertext.hex()

    def test_demo1_is_static(self, client):
        """The IV is stored beside the key, so the demo ciphertext does not change"""
        first = client.get("/api/demo1").json()
        second = client.get("/api/demo1").json()
        assert first == second

    def test_demo2(self, client):
        body = client.get("/api/demo2").json()
        ciphertext = b64_decode(body["ciphertext_b64"])

        assert len(ciphertext) == 16 * 7
        suite = crypto.CipherSuite.AES_128_CBC
        plaintext = crypto.decrypt(suite, crypto.get_key(suite), ciphertext)
        assert plaintext == b"".join(bytes([c]) * 16 for c in b"abcde")

    def test_encrypt(self, client):
        response = client.post("/api/encrypt", json={"plaintext_b64": b64_encode(b"attack at dawn")})

        assert response.status_code == 200
        ciphertext = b64_decode(response.json()["ciphertext_b64"])
        suite = crypto.CipherSuite.AES_128_CBC
        assert crypto.decrypt(suite, crypto.get_key(suite), ciphertext) == b"attack at dawn"


class TestValidate:
    """Test suite for the padding oracle endpoint"""

    def test_valid(self, client):
        sample = client.get("/api/demo1").json()["ciphertext_b64"]

        response = client.post("/api/validate", json={"ciphertext_b64": sample})

        assert response.status_code == 200
        assert response.json() == {"valid": True}

    def test_invalid_padding(self, client):
        """Corrupting the last IV byte corrupts the last padding byte"""
        ciphertext = b64_decode(client.get("/api/demo1").json()["ciphertext_b64"])

        response = client.post("/api/validate", json={"ciphertext_b64": b64_encode(tamper(ciphertext, 15, 0xff))})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid padding bytes."

    def test_query_string(self, client):
        sample = client.get("/api/demo1").json()["ciphertext_b64"]

        response = client.get("/api/validate", params={"ciphertext_b64": sample})

        assert response.status_code == 200

    def test_bad_base64(self, client):
        response = client.post("/api/validate", json={"ciphertext_b64": "!!!"})
        assert response.status_code == 400

    def test_bad_length(self, client):
        response = client.post("/api/validate", json={"ciphertext_b64": b64_encode(bytes(20))})
        assert response.status_code == 400


class TestCrypto:
    """Test suite for the demo cipher suites"""

    def test_round_trip(self):
        suite = crypto.CipherSuite.AES_256_CBC
        key = crypto.get_key(suite)

        ciphertext = crypto.encrypt(suite, key, bytes(16), b"secret")

        assert len(key) == 32
        assert crypto.decrypt(suite, key, ciphertext) == b"secret"

    @pytest.mark.parametrize("suite,key_size", [
        (crypto.CipherSuite.AES_128_CBC, 32),
        (crypto.CipherSuite.AES_256_CBC, 16),
    ])
    def test_key_must_match_suite(self, suite, key_size):
        """AES accepts both key sizes, so the suite is what rejects the mismatch"""
        with pytest.raises(ValueError, match=f"{key_size}"):
            crypto.encrypt(suite, bytes(key_size), bytes(16), b"secret")
        with pytest.raises(ValueError, match="byte key"):
            crypto.decrypt(suite, bytes(key_size), bytes(32))


async def attack(run):
    """Run an attack against the validate endpoint in process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://demo") as http:
        async def submit_guess(prev_block: bytes, target_block: bytes) -> bool:
            response = await http.post("/api/validate", json={"ciphertext_b64": b64_encode(prev_block + target_block)})
            return response.status_code == 200

        cracker = Cracker(CallableOracle(submit_guess), concurrency=16, verify_last_byte=True)
        return await run(cracker)


class TestAttackDemo:
    """End to end attacks against the demo oracle"""

    def test_decrypt_demo1(self, client):
        ciphertext = b64_decode(client.get("/api/demo1").json()["ciphertext_b64"])

        assert asyncio.run(attack(lambda cracker: Decrypter(cracker, 16).decrypt(ciphertext))) == b"Hello, world!"

    def test_encrypt_then_validate(self, client):
        """A forged ciphertext is accepted by the server and decrypts to the chosen text"""
        forged = asyncio.run(attack(lambda cracker: Encrypter(cracker, 16).encrypt(b"forged by the oracle")))

        suite = crypto.CipherSuite.AES_128_CBC
        assert crypto.decrypt(suite, crypto.get_key(suite), forged) == b"forged by the oracle"
        response = client.post("/api/validate", json={"ciphertext_b64": b64_encode(forged)})
        assert response.status_code == 200
