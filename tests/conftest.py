"""Shared fixtures: a scripted fake VTOP server behind httpx.MockTransport."""

from collections.abc import Callable
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from src.vtop.config import VtopConfig
from src.vtop.http import VtopHttpClient
from src.vtop.models import Session, SessionContext

FIXTURES = Path(__file__).parent / "fixtures"
VTOP_URL = "https://vtop.vit.ac.in"

Handler = Callable[[httpx.Request], httpx.Response]


def load_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def html(text: str, status: int = 200, cookies: tuple[str, ...] = ()) -> Handler:
    """Handler answering with an HTML body (fresh Response per call)."""

    def handler(request: httpx.Request) -> httpx.Response:
        headers = [("content-type", "text/html;charset=UTF-8")]
        headers += [("set-cookie", cookie) for cookie in cookies]
        return httpx.Response(status, headers=headers, text=text)

    return handler


def redirect(location: str, status: int = 302, cookies: tuple[str, ...] = ()) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        headers = [("location", location)]
        headers += [("set-cookie", cookie) for cookie in cookies]
        return httpx.Response(status, headers=headers)

    return handler


def form_fields(request: httpx.Request) -> dict[str, str]:
    """Decode an urlencoded request body into a flat dict."""
    parsed = parse_qs(request.content.decode("utf-8"), keep_blank_values=True)
    return {key: values[-1] for key, values in parsed.items()}


class FakeVtop:
    """Routes (method, path) to scripted handlers and records every request.

    Handlers registered for a route are consumed in order; the last one
    keeps answering once the others are used up. An exception instance in
    place of a handler is raised instead of answering.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *handlers) -> "FakeVtop":
        self.routes.setdefault((method.upper(), path), []).extend(handlers)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


class FakeSolver:
    """CAPTCHA solver double: returns scripted guesses, records images."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers) or ["ABC234"]
        self.images: list[str] = []

    def solve(self, data_uri: str) -> str:
        self.images.append(data_uri)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def captcha_uri(seed: int) -> str:
    """A distinct, long enough data URI (the solver double never decodes it)."""
    return "data:image/jpeg;base64," + "QUJD" * 40 + f"{seed:04d}"


def login_page(csrf: str = "login-csrf", captcha: str | None = None, extra: str = "") -> str:
    image = f'<img id="captchaImage" src="{captcha}" alt="captcha"/>' if captcha else ""
    return f"""<html><body>
<form id="vtopLoginForm" method="post" action="/vtop/login">
  <input type="hidden" name="_csrf" value="{csrf}"/>
  <input type="text" name="username"/>
  <input type="password" name="password"/>
  <div class="captcha">{image}</div>
  <input type="text" name="captchaStr"/>
</form>
{extra}
</body></html>"""


@pytest.fixture
def config() -> VtopConfig:
    """Production defaults with every delay and backoff set to zero."""
    return VtopConfig(
        vtop_url=VTOP_URL,
        backoff_initial_seconds=0,
        login_settle_seconds=0,
        captcha_render_wait_seconds=0,
        login_retry_delay_seconds=0,
        page_delay_seconds=0,
        detail_delay_seconds=0,
        preferred_semester=None,
        captcha_weights_path="tests/fixtures/does-not-exist.json",
    )


@pytest.fixture
def vtop() -> FakeVtop:
    return FakeVtop()


@pytest.fixture
async def client(config, vtop):
    async with VtopHttpClient(config, transport=httpx.MockTransport(vtop)) as http:
        yield http


@pytest.fixture
def session() -> Session:
    return Session(
        username="21BCE1234",
        cookies={"JSESSIONID": "node0abc", "SERVERID": "s1"},
        context=SessionContext(csrf_value="dash-csrf-token", authorized_id="21BCE1234"),
        dashboard_html="",
    )
