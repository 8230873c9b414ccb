import asyncio
import functools
import json
from typing import Dict, Optional, Tuple

import click
import requests
import structlog

from pad_fuster.blocks import pad
from pad_fuster.config import AttackConfig
from pad_fuster.cracker import DEFAULT_CONCURRENCY, Cracker
from pad_fuster.decrypter import Decrypter
from pad_fuster.encoding import ENCODINGS, SampleEncoding, b64_decode, decode_sample, encode
from pad_fuster.encrypter import Encrypter
from pad_fuster.errors import ConfigurationError, PadFusterError
from pad_fuster.log import configure_logging, level_from_verbosity
from pad_fuster.oracle import DEFAULT_RETRY_COUNT, CallableOracle, HttpOracle
from pad_fuster.plugins import load_guess_fn
from pad_fuster.ui import CrackProgress

log = structlog.get_logger(component="cli")

DEMO_BASE_URL = "http://127.0.0.1:8000"


@click.group()
def cli():
    pass


def oracle_options(fn):
    """Options shared by every command that attacks an oracle."""
    options = [
        click.option("--url", "-u", help="The target URL, including the query string if applicable"),
        click.option("--sample", "-S", required=True,
                     help="The encrypted value to test. Must be present in the URL, POST data or a Cookie"),
        click.option("--data", "-d", help="The POST data to send"),
        click.option("--cookie", "-c", multiple=True, metavar="NAME=VALUE",
                     help="The cookie to pass; can be used multiple times"),
        click.option("--header", "-H", multiple=True, metavar="NAME: VALUE",
                     help="Extra request header; can be used multiple times"),
        click.option("--method", help="HTTP method (default: POST with --data, GET otherwise)"),
        click.option("--guess-fn", "-g", type=click.Path(exists=True, dir_okay=False),
                     help="Python file defining submit_guess(prev_block, target_block), used instead of --url"),
        click.option("--block-size", "-s", type=int, default=0, show_default=True,
                     help="The block size used by the algorithm (0 to detect)"),
        click.option("--encoding", "-E", type=click.Choice(["auto", *ENCODINGS]), default="auto",
                     show_default=True, help="The encoding of the sample data"),
        click.option("--concurrency", "-n", type=int, default=DEFAULT_CONCURRENCY, show_default=True,
                     help="Number of oracle requests in flight"),
        click.option("--retries", type=int, default=DEFAULT_RETRY_COUNT, show_default=True,
                     help="Attempts per request before it counts as failed"),
        click.option("--padding-error", help="Response text that signals a padding error (default: non-200 status)"),
        click.option("--verify-last-byte", is_flag=True,
                     help="Double check the last byte of each block against padding collisions"),
        click.option("--strict", is_flag=True, help="Abort on any failed oracle request"),
        click.option("--no-progress", is_flag=True, help="Disable the progress display"),
        click.option("--verbose", "-v", count=True, help="Increase output verbosity"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def parse_headers(headers: Tuple[str, ...]) -> Dict[str, str]:
    parsed = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep:
            raise ConfigurationError(f"Invalid header (expected NAME: VALUE): {header}")
        parsed[name.strip()] = value.strip()
    return parsed


def build_oracle(options: dict, encoding: SampleEncoding, concurrency: int):
    if options["guess_fn"]:
        return CallableOracle(load_guess_fn(options["guess_fn"]), max_workers=concurrency)
    if not options["url"]:
        raise ConfigurationError("Missing --url or --guess-fn parameter")
    return HttpOracle(
        options["url"],
        options["sample"],
        data=options["data"],
        cookies=options["cookie"],
        method=options["method"],
        headers=parse_headers(options["header"]),
        encoding=encoding,
        retry_count=options["retries"],
        padding_error=options["padding_error"],
        max_workers=concurrency,
    )


def report_errors(fn):
    """Turn pad_fuster errors into a clean CLI failure."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PadFusterError as e:
            log.error("attack failed", kind=type(e).__name__, error=str(e))
            raise click.ClickException(f"{type(e).__name__}: {e}") from e
    return wrapper


def prepare(options: dict, **config_args) -> Tuple[bytes, SampleEncoding, AttackConfig]:
    configure_logging(level_from_verbosity(options["verbose"]))
    sample, encoding = decode_sample(options["sample"], options["encoding"])
    config = AttackConfig.build(
        len(sample),
        block_size=options["block_size"],
        concurrency=options["concurrency"],
        verify_last_byte=options["verify_last_byte"],
        strict=options["strict"],
        **config_args,
    )
    return sample, encoding, config


def run_decrypt(oracle, config: AttackConfig, ciphertext: bytes, *, progress: bool = True) -> bytes:
    total_bytes = len(ciphertext) - config.block_size  # Don't count IV bytes.
    with CrackProgress(total_bytes, enabled=progress) as ui:
        cracker = Cracker(
            oracle,
            concurrency=config.concurrency,
            verify_last_byte=config.verify_last_byte,
            strict=config.strict,
            on_byte=ui.on_byte,
        )
        decrypter = Decrypter(cracker, config.block_size)
        return asyncio.run(decrypter.decrypt(ciphertext))


def run_encrypt(oracle, config: AttackConfig, plaintext: bytes, *, progress: bool = True) -> bytes:
    total_bytes = len(pad(plaintext, config.block_size))
    if config.intermediate is not None:
        total_bytes -= config.block_size
    with CrackProgress(total_bytes, enabled=progress) as ui:
        cracker = Cracker(
            oracle,
            concurrency=config.concurrency,
            verify_last_byte=config.verify_last_byte,
            strict=config.strict,
            on_byte=ui.on_byte,
        )
        encrypter = Encrypter(
            cracker,
            config.block_size,
            ciphertext=config.ciphertext,
            intermediate=config.intermediate,
        )
        return asyncio.run(encrypter.encrypt(plaintext))


@cli.command()
@oracle_options
@report_errors
def decrypt(**options):
    """Decrypt the sample through the padding oracle."""
    sample, encoding, config = prepare(options)
    with build_oracle(options, encoding, config.concurrency) as oracle:
        plaintext = run_decrypt(oracle, config, sample, progress=not options["no_progress"])
    log.info("resulting plaintext")
    click.echo(encode(plaintext, "raw"))


@cli.command()
@oracle_options
@click.option("--plaintext", "-e", required=True, help="Some plaintext to encrypt")
@click.option("--ciphertext", "-C", help="Initial value for the ciphertext to use for encryption (hex)")
@click.option("--intermediate", "-I", help="Initial intermediate value for the ciphertext (hex)")
@report_errors
def encrypt(plaintext: str, ciphertext: Optional[str], intermediate: Optional[str], **options):
    """Forge a ciphertext for the given plaintext through the padding oracle."""
    _, encoding, config = prepare(options, ciphertext_hex=ciphertext, intermediate_hex=intermediate)
    with build_oracle(options, encoding, config.concurrency) as oracle:
        forged = run_encrypt(oracle, config, plaintext.encode("utf-8"), progress=not options["no_progress"])
    log.info("resulting encrypted text")
    click.echo(encode(forged, encoding))


def fetch_demo_data(endpoint: str) -> str:
    """Fetch the demo data from the given test endpoint."""
    response = requests.get(endpoint, timeout=10)
    if response.status_code != 200:
        raise click.ClickException(f"Failed to get {endpoint}: {response.status_code} {response.text}")
    return response.json()["ciphertext_b64"]


@cli.command()
@click.argument("name", type=click.Choice(["demo1", "demo2"]), default="demo1")
@click.option("--base-url", default=DEMO_BASE_URL, show_default=True, help="Where the demo API is running")
@click.option("--concurrency", "-n", type=int, default=DEFAULT_CONCURRENCY, show_default=True)
@click.option("--verbose", "-v", count=True)
@report_errors
def demo(name: str, base_url: str, concurrency: int, verbose: int):
    """Decrypt a ciphertext served by the demo API through its validate endpoint."""
    configure_logging(level_from_verbosity(verbose))
    sample = fetch_demo_data(f"{base_url}/api/{name}")
    ciphertext = b64_decode(sample)
    config = AttackConfig.build(len(ciphertext), block_size=16, concurrency=concurrency)

    body = json.dumps({"alg": "AES-128-CBC", "ciphertext_b64": sample})
    with HttpOracle(
        f"{base_url}/api/validate",
        sample,
        data=body,
        headers={"Content-Type": "application/json"},
        encoding="b64",
        max_workers=concurrency,
    ) as oracle:
        plaintext = run_decrypt(oracle, config, ciphertext)
    click.echo(encode(plaintext, "raw"))


@cli.command("demo-api")
@click.option("--host", default="127.0.0.1", help="Host to bind the server to")
@click.option("--port", default=8000, help="Port to bind the server to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def demo_api(host: str, port: int, reload: bool):
    """Start the demo API server for testing padding oracle attacks."""
    try:
        import uvicorn
        from demo_api.api import app
    except ImportError as e:
        click.echo(f"Error: Demo API dependencies not available: {e}")
        click.echo("Install with: pip install 'pad-fuster[demo]'")
        raise click.Abort()

    click.echo(f"Starting demo API server on http://{host}:{port}")
    click.echo("Available endpoints:")
    click.echo("  - GET  /api/demo1    - Single block demo")
    click.echo("  - GET  /api/demo2    - Multi-block demo")
    click.echo("  - POST /api/encrypt  - Encrypt plaintext")
    click.echo("  - POST /api/validate - Validate ciphertext (padding oracle)")
    click.echo("  - GET  /api/validate - Same, with ?ciphertext_b64=...")
    click.echo("\nPress Ctrl+C to stop the server")

    if reload:
        uvicorn.run("demo_api.api:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(app, host=host, port=port, reload=False)


if __name__ == "__main__":
    cli()
