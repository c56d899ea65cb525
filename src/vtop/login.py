"""VTOP login protocol: CSRF + CAPTCHA handshake with bounded retries.

Flow (one LoginAttempt per pass, at most config.max_login_attempts passes):

    FetchLoginPage -> ExtractCsrfAndCaptcha -> SolveCaptcha
        -> SubmitCredentials -> InterpretResult
            -> Success | RetryWithFreshCaptcha | Fail

Portal behaviour (confirmed against vtop.vit.ac.in):
  GET /vtop/login redirects through /vtop/open/page. Depending on the
  server's mood the result is either the login form (form#vtopLoginForm,
  input[name=captchaStr]) or a pre-login interstitial (form#stdForm with
  hidden _csrf + flag=VTOP) that has to be POSTed to /vtop/prelogin/setup
  first. The CAPTCHA <img> is sometimes rendered later over AJAX, in which
  case GET /vtop/get/new/captcha returns the image fragment. Each CAPTCHA
  image is single-use.

  A successful POST /vtop/login redirects to /vtop/content (the dashboard).
  There is no single canonical success signal, so several markers are
  OR'ed together.
"""

import asyncio
import re
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.context import extract_dashboard_context
from src.vtop.errors import ParseError, TransientError, VtopError
from src.vtop.http import XHR_HEADERS, CookieJar, VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.models import LoginFailure, LoginResult, LoginSuccess, Session
from src.vtop.utils import find_csrf

logger = get_logger(__name__)

LOGIN_PATH = "/vtop/login"
LOGIN_ERROR_PATH = "/vtop/login/error"
CAPTCHA_PATH = "/vtop/get/new/captcha"
PRELOGIN_PATH = "/vtop/prelogin/setup"

LOGIN_FORM_MARKER = 'id="vtopLoginForm"'
PRELOGIN_FORM_MARKER = 'id="stdForm"'
CAPTCHA_FIELD_MARKER = "captchaStr"

CAPTCHA_LENGTH = 6

# Tried in order; first data URI that is long enough and not "null" wins.
CAPTCHA_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"""<img[^>]+id=["']captchaImage["'][^>]+src=["']\s*(data:image/[^;]+;base64,[^"']+)["']""",
        r"""<img[^>]+src=["']\s*(data:image/[^;]+;base64,[^"']+)["'][^>]*id=["']captchaImage["']""",
        r"""<img[^>]+alt=["']vtopCaptcha["'][^>]+src=["']\s*(data:image/[^;]+;base64,[^"']+)["']""",
        r"""<img[^>]+src=["']\s*(data:image/[^;]+;base64,[^"']+)["'][^>]*alt=["']vtopCaptcha["']""",
        r"""captcha[^>]*<img[^>]+src=["']\s*(data:image/[^;]+;base64,[^"']+)["']""",
        r"""<img[^>]+src=["']\s*(data:image/jpeg;base64,[A-Za-z0-9+/=]{200,})["']""",
    )
)

_FLAG_RE = re.compile(r'name="flag"[^>]*value="([^"]*)"', re.IGNORECASE)
_PRELOGIN_ACTION_RE = re.compile(
    r"""<form[^>]+id=["']stdForm["'][^>]*action=["']([^"']+)["']""", re.IGNORECASE
)
_ALERT_RE = re.compile(r"""alert\(['"]([^'"]+)['"]\)""", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")

INVALID_CREDENTIAL_MARKERS: tuple[str, ...] = ("Invalid LoginId/Password", "Invalid Username")

INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."
CAPTCHA_EXHAUSTED_MESSAGE = (
    "Unable to solve captcha after multiple attempts. Please try again later."
)


def extract_csrf_token(html: str) -> str:
    """CSRF token of the login page. Mandatory: raises ParseError if absent."""
    token = find_csrf(html)
    if not token:
        raise ParseError("Unable to locate CSRF token in login page.")
    return token


def extract_captcha(html: str) -> str | None:
    """Data URI of the CAPTCHA image, or None if the page has none."""
    for index, pattern in enumerate(CAPTCHA_PATTERNS):
        match = pattern.search(html)
        if match and "null" not in match.group(1) and len(match.group(1)) > 100:
            logger.debug("captcha_found", pattern=index + 1, length=len(match.group(1)))
            return match.group(1)
    return None


def normalize_guess(raw: object) -> str:
    """Uppercase alphanumerics, truncated to CAPTCHA_LENGTH characters."""
    if not isinstance(raw, str):
        return ""
    return _NON_ALNUM_RE.sub("", raw.upper())[:CAPTCHA_LENGTH]


def is_login_success(url: str, html: str) -> bool:
    """OR of every marker VTOP has been seen to use for an authenticated page."""
    on_login_form = LOGIN_FORM_MARKER in html
    return (
        "/vtop/content" in url
        or ("/vtop/studentLogin" in url and not on_login_form)
        or 'id="page-holder"' in html
        or "vtop-body-content" in html
        or "authorizedID" in html
        or ("hmenuItem" in html and not on_login_form)
    )


def has_invalid_credentials(html: str) -> bool:
    if any(marker in html for marker in INVALID_CREDENTIAL_MARKERS):
        return True
    if "text-danger" in html and "Invalid" in html:
        return "captcha" not in html.lower()
    return False


def is_captcha_alert(message: str) -> bool:
    lowered = message.lower()
    return "captcha" in lowered or "verification code" in lowered


class LoginAttempt(BaseModel):
    """Immutable state of one pass through the login state machine."""

    model_config = ConfigDict(frozen=True)

    number: int = 1
    csrf: str = ""
    captcha_image: str | None = None
    captcha_guess: str = ""
    seen_captchas: tuple[str, ...] = ()

    def next(self) -> "LoginAttempt":
        """Fresh attempt that still remembers every CAPTCHA already used."""
        seen = self.seen_captchas
        if self.captcha_image and self.captcha_image not in seen:
            seen = seen + (self.captcha_image,)
        return LoginAttempt(number=self.number + 1, seen_captchas=seen)


class Verdict(Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAIL = "fail"


class LoginProtocol:
    """Runs the VTOP authentication handshake.

    Never raises for application-level failures: login() always returns a
    LoginSuccess or a LoginFailure.
    """

    def __init__(
        self,
        client: VtopHttpClient,
        solver: CaptchaSolver | None = None,
        config: VtopConfig | None = None,
    ) -> None:
        self.client = client
        self.solver = solver or CaptchaSolver()
        self.config = config or client.config
        self.origin = self.config.vtop_url.rstrip("/")

    async def login(self, username: str, password: str) -> LoginResult:
        """Authenticate and return cookies, session context and dashboard HTML."""
        jar = CookieJar()
        logger.info("login_started", username=username.upper())
        try:
            result = await self._run(username, password, jar)
        except VtopError as e:
            logger.warning("login_error", error=str(e), type=type(e).__name__)
            message = str(e)
            if isinstance(e, TransientError):
                message = f"Could not reach VTOP: {e}"
            return LoginFailure(error=message, requires_retry=isinstance(e, TransientError))

        if result.success:
            logger.info("login_succeeded", username=username.upper(), cookie_names=list(jar))
        else:
            logger.info("login_failed", error=result.error, requires_retry=result.requires_retry)
        return result

    async def _run(self, username: str, password: str, jar: CookieJar) -> LoginResult:
        max_attempts = self.config.max_login_attempts
        attempt = LoginAttempt()

        while True:
            logger.info("login_attempt", attempt=attempt.number, max_attempts=max_attempts)

            # FetchLoginPage
            html, page_url = await self.fetch_login_page(jar)

            # ExtractCsrfAndCaptcha
            attempt = await self.extract_csrf_and_captcha(html, page_url, jar, attempt)

            # SolveCaptcha
            guess = self.solve_captcha(attempt, html)
            if guess is None:
                if attempt.number >= max_attempts:
                    return LoginFailure(error=CAPTCHA_EXHAUSTED_MESSAGE, requires_retry=True)
                attempt = attempt.next()
                await asyncio.sleep(self.config.login_retry_delay_seconds)
                continue
            attempt = attempt.model_copy(update={"captcha_guess": guess})

            # SubmitCredentials
            final_url, final_html = await self.submit_credentials(
                username, password, attempt, page_url, jar
            )

            # InterpretResult
            verdict, result = self.interpret_result(final_url, final_html, attempt, jar)
            if verdict is Verdict.RETRY:
                if attempt.number >= max_attempts:
                    return LoginFailure(error=CAPTCHA_EXHAUSTED_MESSAGE, requires_retry=True)
                attempt = attempt.next()
                await asyncio.sleep(self.config.login_retry_delay_seconds)
                continue
            return result

    async def fetch_login_page(self, jar: CookieJar) -> tuple[str, str]:
        """GET the login page, clearing the pre-login interstitial if shown.

        Returns:
            (html, final url) of the page carrying the login form.
        """
        response = await self.client.request("GET", self.client.url(LOGIN_PATH), jar)
        html = response.text
        await asyncio.sleep(self.config.login_settle_seconds)

        for _ in range(2):
            if LOGIN_FORM_MARKER in html or CAPTCHA_FIELD_MARKER in html:
                break
            if PRELOGIN_FORM_MARKER not in html:
                break

            csrf = extract_csrf_token(html)
            flag_match = _FLAG_RE.search(html)
            action_match = _PRELOGIN_ACTION_RE.search(html)
            action = action_match.group(1) if action_match else PRELOGIN_PATH
            logger.debug("prelogin_setup", action=action)

            response = await self.client.request(
                "POST",
                self.client.url(action),
                jar,
                data={"_csrf": csrf, "flag": flag_match.group(1) if flag_match else "VTOP"},
                headers={"Referer": str(response.url), "Origin": self.origin},
            )
            html = response.text

        return html, str(response.url)

    async def fetch_captcha_image(self, page_url: str, jar: CookieJar) -> str | None:
        """Ask the portal for a brand-new CAPTCHA image fragment."""
        await asyncio.sleep(self.config.captcha_render_wait_seconds)
        url = self.client.url(CAPTCHA_PATH).copy_merge_params({"_": str(int(time.time() * 1000))})
        response = await self.client.request(
            "GET",
            url,
            jar,
            headers={"Accept": "text/html,*/*", **XHR_HEADERS, "Referer": page_url, "Origin": self.origin},
        )
        # The image is rendered server side; give it a moment before reading it
        await asyncio.sleep(self.config.captcha_render_wait_seconds)
        captcha = extract_captcha(response.text)
        logger.debug("captcha_fetched", found=captcha is not None)
        return captcha

    async def extract_csrf_and_captcha(
        self, html: str, page_url: str, jar: CookieJar, attempt: LoginAttempt
    ) -> LoginAttempt:
        csrf = extract_csrf_token(html)
        captcha = extract_captcha(html)

        if captcha is None and CAPTCHA_FIELD_MARKER in html:
            logger.debug("captcha_deferred", attempt=attempt.number)
            captcha = await self.fetch_captcha_image(page_url, jar)

        if captcha is not None and captcha in attempt.seen_captchas:
            logger.info("captcha_reused_by_portal", attempt=attempt.number)
            captcha = await self.fetch_captcha_image(page_url, jar)
            if captcha in attempt.seen_captchas:
                captcha = None

        return attempt.model_copy(update={"csrf": csrf, "captcha_image": captcha})

    def solve_captcha(self, attempt: LoginAttempt, html: str) -> str | None:
        """Solved CAPTCHA, "" when the page shows none, None when unsolvable."""
        if attempt.captcha_image is None:
            if CAPTCHA_FIELD_MARKER in html:
                logger.warning("captcha_unavailable", attempt=attempt.number)
                return None
            logger.warning("captcha_absent", attempt=attempt.number)
            return ""

        try:
            guess = normalize_guess(self.solver.solve(attempt.captcha_image))
        except Exception as e:
            logger.warning(
                "captcha_solve_failed",
                attempt=attempt.number,
                error=str(e),
                type=type(e).__name__,
            )
            return None

        if len(guess) != CAPTCHA_LENGTH:
            logger.warning("captcha_solve_invalid", attempt=attempt.number, guess=guess)
            return None
        logger.info("captcha_solved", attempt=attempt.number, guess=guess)
        return guess

    async def submit_credentials(
        self,
        username: str,
        password: str,
        attempt: LoginAttempt,
        page_url: str,
        jar: CookieJar,
    ) -> tuple[str, str]:
        response = await self.client.request(
            "POST",
            self.client.url(LOGIN_PATH),
            jar,
            data={
                "_csrf": attempt.csrf,
                "username": username.upper(),
                "password": password,
                "captchaStr": attempt.captcha_guess,
            },
            headers={"Referer": page_url, "Origin": self.origin},
        )
        logger.debug("login_submitted", status=response.status_code, url=str(response.url))
        return str(response.url), response.text

    def interpret_result(
        self, url: str, html: str, attempt: LoginAttempt, jar: CookieJar
    ) -> tuple[Verdict, LoginResult | None]:
        if is_login_success(url, html):
            context = extract_dashboard_context(html)
            if context is None:
                return Verdict.FAIL, LoginFailure(
                    error="VTOP accepted the login but did not return session tokens. "
                    "Please try again.",
                    requires_retry=True,
                )
            if not len(jar):
                logger.warning("login_without_cookies", url=url)
                return Verdict.FAIL, LoginFailure(
                    error="VTOP accepted the login but did not set a session cookie. "
                    "Please try again.",
                    requires_retry=True,
                )
            return Verdict.SUCCESS, LoginSuccess(
                cookies=jar.as_dict(), context=context, dashboard_html=html
            )

        if has_invalid_credentials(html):
            return Verdict.FAIL, LoginFailure(error=INVALID_CREDENTIALS_MESSAGE)

        alert = _ALERT_RE.search(html)
        if alert:
            message = alert.group(1)
            logger.info("login_alert", message=message, attempt=attempt.number)
            if is_captcha_alert(message):
                return Verdict.RETRY, None
            return Verdict.FAIL, LoginFailure(error="Login failed. Please try again later.")

        solved = bool(attempt.captcha_image and attempt.captcha_guess)
        if LOGIN_ERROR_PATH in url or LOGIN_FORM_MARKER in html or CAPTCHA_FIELD_MARKER in html:
            if solved:
                return Verdict.FAIL, LoginFailure(
                    error=f'Captcha "{attempt.captcha_guess}" was rejected. Please try again.',
                    requires_retry=True,
                )
            return Verdict.FAIL, LoginFailure(error=INVALID_CREDENTIALS_MESSAGE)

        logger.warning("login_unrecognized_response", url=url, length=len(html))
        return Verdict.FAIL, LoginFailure(error="Unexpected response from VTOP.")


def session_from_login(username: str, result: LoginSuccess) -> Session:
    """Assemble the Session a successful login hands to the SessionStore."""
    return Session(
        username=username.strip().upper(),
        cookies=dict(result.cookies),
        context=result.context,
        dashboard_html=result.dashboard_html,
    )
