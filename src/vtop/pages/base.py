"""VtopPage - shared request discipline for authenticated VTOP endpoints.

Every data endpoint under /vtop/ is a form POST that must carry:
  authorizedID   registration number from the dashboard
  <csrfName>     CSRF value from the dashboard (name is usually "_csrf")
  x              current time as an RFC 1123 UTC string (cache buster)

When the session has expired VTOP does not answer 401; it redirects to
/vtop/login (or serves the login form in place). Occasionally it answers a
data POST with a CAPTCHA challenge (img + captchaStr input) instead of the
data; resubmitting the same form with captchaStr and the challenge's _csrf
gets the real page.
"""

import asyncio
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from email.utils import formatdate

import httpx

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.errors import (
    CaptchaError,
    InvalidSessionError,
    PortalResponseError,
    SessionExpiredError,
)
from src.vtop.http import XHR_HEADERS, CookieJar, VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.login import (
    CAPTCHA_FIELD_MARKER,
    LOGIN_FORM_MARKER,
    extract_captcha,
    normalize_guess,
)
from src.vtop.models import SemesterOption, Session
from src.vtop.utils import find_csrf, strip_tags

log = get_logger(__name__)

APP_PATH = "/vtop/"


def utc_timestamp() -> str:
    """'Mon, 19 Oct 2026 10:00:00 GMT', the format VTOP's own JS sends as x."""
    return formatdate(usegmt=True)


def validate_session(session: Session | None) -> Session:
    """Raise InvalidSessionError unless the session can authenticate requests."""
    if session is None or not session.is_usable:
        raise InvalidSessionError("Invalid session data")
    return session


@asynccontextmanager
async def client_scope(
    client: VtopHttpClient | None, config: VtopConfig | None = None
) -> AsyncIterator[VtopHttpClient]:
    """Yield the given client, or a temporary one closed on exit."""
    if client is not None:
        yield client
        return
    async with VtopHttpClient(config) as owned:
        yield owned


class VtopPage:
    """Base class for one authenticated VTOP screen.

    Works on a private copy of the session cookies; the Session passed in is
    never mutated.
    """

    def __init__(
        self,
        session: Session,
        client: VtopHttpClient,
        *,
        solver: CaptchaSolver | None = None,
        config: VtopConfig | None = None,
    ) -> None:
        self.session = validate_session(session)
        self.context = session.context
        self.client = client
        self.config = config or client.config
        self.jar = CookieJar(session.cookies)
        self._solver = solver

    @property
    def solver(self) -> CaptchaSolver:
        if self._solver is None:
            self._solver = CaptchaSolver()
        return self._solver

    def auth_params(self, **extra: str) -> dict[str, str]:
        """authorizedID + CSRF pair + x, plus any endpoint-specific fields."""
        params = {
            "authorizedID": self.context.authorized_id,
            self.context.csrf_name or "_csrf": self.context.csrf_value,
            "x": utc_timestamp(),
        }
        params.update(extra)
        return params

    async def post(
        self,
        path: str,
        data: Mapping[str, str] | None = None,
        *,
        multipart: bool = False,
        xhr: bool = False,
        delay: float | None = None,
    ) -> str:
        """POST to /vtop/<path> and return the response HTML.

        Args:
            path: Endpoint below /vtop/ (e.g. "examinations/StudExamSchedule").
            data: Form fields; defaults to auth_params().
            multipart: Send as multipart/form-data instead of urlencoded.
            xhr: Add X-Requested-With like VTOP's own AJAX calls.
            delay: Pause before sending (default: config.page_delay_seconds).

        Raises:
            SessionExpiredError: The request landed on the login page.
            PortalResponseError: HTTP status >= 400.
            RequestFailedError: Transient failures exhausted all retries.
        """
        fields = dict(data) if data is not None else self.auth_params()
        url = self.client.url(APP_PATH + path.lstrip("/"))
        headers = {"Referer": str(self.client.url(APP_PATH + "content"))}
        if xhr:
            headers.update(XHR_HEADERS)

        await asyncio.sleep(self.config.page_delay_seconds if delay is None else delay)
        response_url, status, html = await self._send(url, fields, headers, multipart)

        if self._is_captcha_challenge(html):
            resubmitted = await self._resubmit_with_captcha(url, fields, headers, multipart, html)
            if resubmitted is not None:
                response_url, status, html = resubmitted

        self._check_response(path, response_url, status, html)
        return html

    async def _send(
        self,
        url: httpx.URL,
        fields: dict[str, str],
        headers: dict[str, str],
        multipart: bool,
    ) -> tuple[str, int, str]:
        if multipart:
            files = {name: (None, value.encode("utf-8")) for name, value in fields.items()}
            response = await self.client.request("POST", url, self.jar, files=files, headers=headers)
        else:
            response = await self.client.request("POST", url, self.jar, data=fields, headers=headers)
        return str(response.url), response.status_code, response.text

    @staticmethod
    def _is_captcha_challenge(html: str) -> bool:
        return (
            CAPTCHA_FIELD_MARKER in html
            and LOGIN_FORM_MARKER not in html
            and extract_captcha(html) is not None
        )

    async def _resubmit_with_captcha(
        self,
        url: httpx.URL,
        fields: dict[str, str],
        headers: dict[str, str],
        multipart: bool,
        html: str,
    ) -> tuple[str, int, str] | None:
        """Solve the embedded challenge once and replay the form."""
        log.info("captcha_challenge_detected", url=str(url))
        try:
            guess = normalize_guess(self.solver.solve(extract_captcha(html)))
        except CaptchaError as e:
            log.warning("captcha_challenge_unsolved", error=str(e))
            return None
        if not guess:
            return None

        replay = dict(fields)
        replay["captchaStr"] = guess
        replay["_csrf"] = find_csrf(html) or replay.get("_csrf", "")
        log.info("captcha_challenge_resubmitted", url=str(url), guess=guess)
        return await self._send(url, replay, headers, multipart)

    def _check_response(self, path: str, url: str, status: int, html: str) -> None:
        if "/vtop/login" in url or LOGIN_FORM_MARKER in html:
            log.warning("session_expired", path=path, url=url)
            raise SessionExpiredError("Session expired. Please log in again.")
        if status >= 400:
            raise PortalResponseError(
                f"VTOP returned HTTP {status} for {path}", status_code=status
            )


_OPTION_RE = re.compile(
    r"""<option\s+value=["']([^"']+)["']([^>]*)>([^<]+)</option>""", re.IGNORECASE
)
_SEMESTER_SELECT_RE = re.compile(
    r"""<select[^>]+id=["']semesterSubId["'][^>]*>([\s\S]*?)</select>""", re.IGNORECASE
)


def parse_semester_options(html: str, *, select_only: bool = False) -> list[SemesterOption]:
    """Semester <option>s of a VTOP dropdown.

    Placeholders ("Choose Semester", "-- Select --") and empty values are
    skipped. With select_only, only options inside select#semesterSubId
    count.
    """
    if select_only:
        match = _SEMESTER_SELECT_RE.search(html)
        if not match:
            return []
        html = match.group(1)

    options = []
    for value, attributes, text in _OPTION_RE.findall(html):
        value = value.strip()
        label = strip_tags(text)
        lowered = label.lower()
        if not value or not label or "choose semester" in lowered or "select" in lowered:
            continue
        options.append(
            SemesterOption(value=value, label=label, selected="selected" in attributes)
        )
    return options


def choose_semester(
    options: list[SemesterOption],
    label: str | None = None,
    preferred: str | None = None,
) -> SemesterOption:
    """Pick a semester: requested label/value, then preferred, then selected, then first."""
    for wanted in (label, preferred):
        if not wanted:
            continue
        for option in options:
            if wanted.lower() in option.label.lower() or option.value == wanted:
                return option
    for option in options:
        if option.selected:
            return option
    return options[0]
