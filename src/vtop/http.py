"""Cookie-aware HTTP client for the VTOP portal.

VTOP session affinity is cookie based and its login flow chains several
redirects (login -> open page -> prelogin setup -> login form). httpx's own
redirect handling and cookie store are disabled: cookies are tracked in an
explicit CookieJar that travels with the login attempt / session, and
redirects are walked by hand so every hop re-applies the jar and never sends
it to a foreign host.
"""

from collections.abc import Iterator, Mapping
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.vtop.config import VtopConfig, get_config
from src.vtop.errors import PortalResponseError, RequestFailedError, TransientError
from src.vtop.logging import get_logger

logger = get_logger(__name__)

# httpx errors that map to connection reset / timeout / DNS temporary failure.
RETRYABLE_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

XHR_HEADERS: dict[str, str] = {"X-Requested-With": "XMLHttpRequest"}

# 301/302/303 become GET, 307/308 replay method and body.
_METHOD_PRESERVING_REDIRECTS = frozenset({307, 308})


class CookieJar:
    """Name -> value cookie store scoped to one VTOP session.

    Only the name=value pair of each Set-Cookie header is kept; path, domain
    and expiry attributes are ignored because the jar never outlives the
    session it belongs to. Later values overwrite earlier ones.
    """

    def __init__(self, cookies: Mapping[str, str] | None = None) -> None:
        self._cookies: dict[str, str] = dict(cookies or {})

    def update_from_response(self, response: httpx.Response) -> None:
        for raw in response.headers.get_list("set-cookie"):
            pair = raw.split(";", 1)[0]
            name, sep, value = pair.partition("=")
            name = name.strip()
            if sep and name:
                self._cookies[name] = value.strip()

    def set(self, name: str, value: str) -> None:
        self._cookies[name] = value

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._cookies.get(name, default)

    def header(self) -> str:
        """Cookie header value, in insertion order."""
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())

    def as_dict(self) -> dict[str, str]:
        return dict(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)

    def __contains__(self, name: object) -> bool:
        return name in self._cookies

    def __iter__(self) -> Iterator[str]:
        return iter(self._cookies)

    def __repr__(self) -> str:
        return f"CookieJar(names={sorted(self._cookies)})"


class VtopHttpClient:
    """Async HTTP client with retry, manual redirects and an explicit jar.

    Usage:
        async with VtopHttpClient() as client:
            response = await client.request("GET", client.url("/vtop/login"), jar)
    """

    def __init__(
        self,
        config: VtopConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: VTOP configuration (defaults to the singleton).
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self.config = config or get_config()
        self.origin = httpx.URL(self.config.vtop_url)
        self._client = httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(self.config.request_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "VtopHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def url(self, path: str) -> httpx.URL:
        """Resolve a path (or absolute URL) against the VTOP origin."""
        return self.origin.join(path)

    def build_request(
        self,
        method: str,
        url: httpx.URL | str,
        jar: CookieJar,
        *,
        data: Mapping[str, str] | None = None,
        files: Mapping[str, Any] | None = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Request:
        """Build a request carrying the jar's cookies.

        Cookies are attached only when the target is the VTOP host itself.
        The body is read eagerly so the request can be re-sent on retry.
        """
        url = httpx.URL(str(url))
        merged = {"User-Agent": self.config.vtop_user_agent, **DEFAULT_HEADERS}
        if headers:
            merged.update(headers)
        if len(jar) and url.host == self.origin.host:
            merged["Cookie"] = jar.header()

        request = httpx.Request(
            method,
            url,
            headers=merged,
            data=data,
            files=files,
            content=content,
        )
        request.read()
        return request

    async def fetch_with_retry(self, request: httpx.Request) -> httpx.Response:
        """Send a request, retrying transient failures with exponential backoff.

        Raises:
            RequestFailedError: If every attempt failed transiently.
            httpx.HTTPError: For non-retryable transport errors.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_request_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_initial_seconds, exp_base=2
            ),
            retry=retry_if_exception_type(TransientError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send_once(request)
        except TransientError as e:
            logger.warning(
                "request_failed",
                method=request.method,
                url=str(request.url),
                attempts=self.config.max_request_attempts,
                error=str(e),
            )
            raise RequestFailedError(
                f"Request to {request.url.path} failed after "
                f"{self.config.max_request_attempts} attempts: {e}"
            ) from e
        return response

    async def _send_once(self, request: httpx.Request) -> httpx.Response:
        try:
            response = await self._client.send(request)
        except httpx.TimeoutException as e:
            raise TransientError(
                f"Request timeout after {self.config.request_timeout_seconds}s"
            ) from e
        except RETRYABLE_TRANSPORT_ERRORS as e:
            raise TransientError(f"{type(e).__name__}: {e}") from e
        except httpx.HTTPError as e:
            raise PortalResponseError(
                f"Request to {request.url.path} failed: {type(e).__name__}: {e}"
            ) from e
        finally:
            # Cookies live in CookieJar only
            self._client.cookies.clear()

        if response.status_code >= 500:
            raise TransientError(f"Server error {response.status_code}")
        return response

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "request_retry",
            attempt=retry_state.attempt_number,
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error),
        )

    async def fetch_with_cookies(
        self,
        method: str,
        url: httpx.URL | str,
        jar: CookieJar,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request with the jar applied, then absorb its Set-Cookie headers."""
        request = self.build_request(method, url, jar, **kwargs)
        response = await self.fetch_with_retry(request)
        jar.update_from_response(response)
        logger.debug(
            "http_response",
            method=method,
            url=str(request.url),
            status=response.status_code,
            cookie_names=list(jar),
        )
        return response

    async def follow_redirects(
        self,
        response: httpx.Response,
        jar: CookieJar,
        max_hops: int | None = None,
    ) -> httpx.Response:
        """Walk 3xx responses by hand, re-applying the jar on every hop.

        Returns the first non-redirect response, or the last response once
        max_hops redirects have been followed.
        """
        hops = self.config.max_redirect_hops if max_hops is None else max_hops
        current = response
        for _ in range(hops):
            location = current.headers.get("location")
            if not (current.is_redirect and location):
                return current

            next_url = current.url.join(location)
            previous = current.request
            if current.status_code in _METHOD_PRESERVING_REDIRECTS:
                current = await self.fetch_with_cookies(
                    previous.method,
                    next_url,
                    jar,
                    content=previous.content,
                    headers={"Content-Type": previous.headers.get("content-type", "")}
                    if previous.content
                    else None,
                )
            else:
                current = await self.fetch_with_cookies("GET", next_url, jar)
            logger.debug("redirect_followed", url=str(next_url), status=current.status_code)
        return current

    async def request(
        self,
        method: str,
        url: httpx.URL | str,
        jar: CookieJar,
        **kwargs: Any,
    ) -> httpx.Response:
        """fetch_with_cookies followed by follow_redirects."""
        response = await self.fetch_with_cookies(method, url, jar, **kwargs)
        return await self.follow_redirects(response, jar)
