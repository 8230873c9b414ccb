import binascii

from fastapi import FastAPI, APIRouter, HTTPException
import structlog

from pad_fuster.encoding import b64_encode, b64_decode

from . import crypto, models

log = structlog.get_logger(component="demo_api")

# Create the FastAPI app
app = FastAPI(title="Padding Oracle Demo API")

# Create the router for API endpoints
router = APIRouter()


def encrypt(suite: crypto.CipherSuite, plaintext: bytes) -> bytes:
    key = crypto.get_key(suite)
    iv = crypto.get_iv(suite, random=False)

    ciphertext = crypto.encrypt(suite, key, iv, plaintext)
    log.info(
        "encrypted",
        cipher=str(suite),
        plaintext_hex=plaintext.hex(" "),
        iv_hex=iv.hex(),
        ciphertext_hex=ciphertext.hex(" "),
        ciphertext_len=len(ciphertext),
    )
    return ciphertext


def build_encrypted_response(plaintext: bytes) -> models.EncryptResponse:
    """ Build a response with the encrypted ciphertext of the given plaintext. """
    suite = crypto.CipherSuite.AES_128_CBC
    ct = encrypt(suite, plaintext)
    return models.EncryptResponse(
        alg=suite,
        ciphertext_b64=b64_encode(ct),
        ciphertext_hex=ct.hex(),
    )


def check_padding(suite: crypto.CipherSuite, ciphertext_b64: str) -> models.ValidateResponse:
    """ The padding oracle: 200 when the padding is valid, 400 otherwise. """
    try:
        ciphertext = b64_decode(ciphertext_b64)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid base64: {e}")

    try:
        crypto.decrypt(suite, crypto.get_key(suite), ciphertext)
    except ValueError as e:
        log.debug("rejected ciphertext", error=str(e), ciphertext_hex=ciphertext.hex())
        raise HTTPException(status_code=400, detail=f"{e}")

    return models.ValidateResponse(valid=True)


@router.get("/demo1", response_model=models.EncryptResponse)
def demo1():
    """ Single block with static IV and ciphertext.
    """
    return build_encrypted_response(b"Hello, world!")


@router.get("/demo2", response_model=models.EncryptResponse)
def demo2():
    """ Ciphertext with 5 blocks and a static IV.
    Each plaintext block is 16 bytes of the same character.
    """
    plaintext = (
        b"aaaaaaaaaaaaaaaa"
        b"bbbbbbbbbbbbbbbb"
        b"cccccccccccccccc"
        b"dddddddddddddddd"
        b"eeeeeeeeeeeeeeee"
    )
    return build_encrypted_response(plaintext)


@router.post("/encrypt", response_model=models.EncryptResponse)
def encrypt_api(req: models.EncryptRequest):
    """ Encrypt the given plaintext and return the ciphertext. """
    try:
        plaintext = b64_decode(req.plaintext_b64)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Encryption error: {e}")
    return build_encrypted_response(plaintext)


@router.post("/validate", response_model=models.ValidateResponse)
def validate(req: models.ValidateRequest):
    """ Validate the given ciphertext.
    This is the endpoint that is vulnerable to the padding oracle attack.
    """
    return check_padding(req.alg, req.ciphertext_b64)


@router.get("/validate", response_model=models.ValidateResponse)
def validate_query(ciphertext_b64: str, alg: crypto.CipherSuite = crypto.CipherSuite.AES_128_CBC):
    """ Same oracle, with the ciphertext in the query string. """
    return check_padding(alg, ciphertext_b64)


# Include the router in the app (after all routes are defined)
app.include_router(router, prefix="/api")
