import httpx
import pytest

from src.vtop.errors import (
    CaptchaDecodeError,
    ParseError,
    PortalResponseError,
    RequestFailedError,
    SessionExpiredError,
)
from src.vtop.models import ErrorResult, ExamSchedule, SemesterOption, Session
from src.vtop.service import NOT_LOGGED_IN_MESSAGE, VtopService, error_result
from src.vtop.store import InMemorySessionStore
from tests.conftest import (
    FakeSolver,
    captcha_uri,
    form_fields,
    html,
    load_fixture,
    login_page,
    redirect,
)

ATTENDANCE_PATH = "/vtop/get/dashboard/current/semester/course/details"
SESSION_COOKIE = ("JSESSIONID=node0xyz; Path=/vtop",)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def service(store, client, config) -> VtopService:
    return VtopService(store, client=client, solver=FakeSolver("ABC234"), config=config)


async def test_requests_without_session_need_login(service):
    result = await service.attendance("nobody")
    assert result == ErrorResult(error=NOT_LOGGED_IN_MESSAGE)


async def test_login_stores_session_even_when_prefetch_fails(service, store, vtop):
    vtop.on("GET", "/vtop/login", html(login_page(captcha=captcha_uri(1))))
    vtop.on("POST", "/vtop/login", html(load_fixture("dashboard.html"), cookies=SESSION_COOKIE))

    session = await service.login("chat-42", "21bce1234", "pw")

    assert isinstance(session, Session)
    assert session.username == "21BCE1234"
    assert store.get("chat-42") is session
    assert session.exam_schedule is None
    assert session.assignments is None
    assert len(vtop.calls("POST", "/vtop/examinations/StudExamSchedule")) == 1
    assert len(vtop.calls("POST", "/vtop/examinations/StudentDA")) == 1


async def test_login_prefetches_exam_schedule(service, vtop):
    vtop.on("GET", "/vtop/login", html(login_page(captcha=captcha_uri(1))))
    vtop.on("POST", "/vtop/login", html(load_fixture("dashboard.html"), cookies=SESSION_COOKIE))
    vtop.on("POST", "/vtop/examinations/StudExamSchedule", html(load_fixture("exam_menu.html")))
    vtop.on(
        "POST",
        "/vtop/examinations/doSearchExamScheduleForStudent",
        html(load_fixture("exam_schedule.html")),
    )

    session = await service.login("chat-42", "21BCE1234", "pw")

    assert session.exam_semester.value == "VL20252601"
    assert session.exam_schedule.total() == 3

    cached = await service.exam_schedule("chat-42")
    assert cached.schedule.total() == 3
    assert len(vtop.calls("POST", "/vtop/examinations/doSearchExamScheduleForStudent")) == 1


async def test_login_failure_is_an_error_result(service, store, vtop):
    vtop.on("GET", "/vtop/login", html(login_page(captcha=captcha_uri(1))))
    vtop.on("POST", "/vtop/login", html(login_page(extra="Invalid Username/Password")))

    result = await service.login("chat-42", "21BCE1234", "bad")

    assert result == ErrorResult(error="Invalid username or password.")
    assert "chat-42" not in store


async def test_empty_credentials_are_rejected_locally(service, vtop):
    result = await service.login("chat-42", "", "pw")
    assert result.error == "Username and password required"
    assert vtop.requests == []


async def test_unusable_session_is_dropped(service, store):
    store.set("chat-42", Session(username="21BCE1234"))
    assert service.validate("chat-42") is None
    assert "chat-42" not in store


async def test_expired_session_is_deleted(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", ATTENDANCE_PATH, redirect("/vtop/login"))
    vtop.on("GET", "/vtop/login", html(login_page()))

    result = await service.attendance("chat-42")

    assert result == ErrorResult(error="Your VTOP session has expired. Please log in again.")
    assert "chat-42" not in store


async def test_bad_input_keeps_the_session(service, store, vtop, session):
    store.set("chat-42", session)

    result = await service.faculty_search("chat-42", "ab")

    assert result.error == "Search query must be at least 3 characters"
    assert not result.requires_retry
    assert "chat-42" in store
    assert vtop.requests == []


async def test_unreachable_portal_asks_for_retry(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", ATTENDANCE_PATH, httpx.ConnectError("refused"))

    result = await service.attendance("chat-42")

    assert result.requires_retry
    assert "chat-42" in store


async def test_cached_exam_schedule_makes_no_request(service, store, vtop, session):
    semester = SemesterOption(value="VL20252601", label="Fall Semester 2025-26")
    session.exam_schedule = ExamSchedule()
    session.exam_semester = semester
    store.set("chat-42", session)

    result = await service.exam_schedule("chat-42")

    assert result.semester == semester
    assert vtop.requests == []


async def test_refresh_bypasses_cache(service, store, vtop, session):
    session.exam_schedule = ExamSchedule()
    session.exam_semester = SemesterOption(value="VL1", label="Old")
    store.set("chat-42", session)
    vtop.on("POST", "/vtop/examinations/StudExamSchedule", html(load_fixture("exam_menu.html")))
    vtop.on(
        "POST",
        "/vtop/examinations/doSearchExamScheduleForStudent",
        html(load_fixture("exam_schedule.html")),
    )

    result = await service.exam_schedule("chat-42", refresh=True)

    assert result.schedule.total() == 3
    assert store.get("chat-42").exam_semester.value == "VL20252601"


async def test_logout_posts_csrf_and_forgets_session(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", "/vtop/logout", html("bye"))

    await service.logout("chat-42")

    (request,) = vtop.requests
    assert form_fields(request) == {"_csrf": "dash-csrf-token"}
    assert request.headers["cookie"] == "JSESSIONID=node0abc; SERVERID=s1"
    assert "chat-42" not in store


async def test_logout_survives_unreachable_portal(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", "/vtop/logout", httpx.ConnectError("refused"))

    await service.logout("chat-42")

    assert "chat-42" not in store


async def test_owned_client_is_closed(store, config):
    service = VtopService(store, config=config)
    async with service:
        pass
    assert service.client._client.is_closed


@pytest.mark.parametrize(
    ("exc", "requires_retry"),
    [
        (RequestFailedError("timed out"), True),
        (CaptchaDecodeError("no luck"), True),
        (SessionExpiredError("expired"), False),
        (PortalResponseError("HTTP 500", status_code=500), False),
        (ParseError("no table"), False),
        (ValueError("Class ID is required"), False),
    ],
)
def test_error_result_mapping(exc, requires_retry):
    assert error_result(exc).requires_retry is requires_retry


def test_error_result_refuses_unexpected_exceptions():
    with pytest.raises(TypeError):
        error_result(KeyError("boom"))


def test_store_protocol():
    store = InMemorySessionStore()
    session = Session(username="21BCE1234")
    store.set("a", session)
    assert store.get("a") is session
    assert len(store) == 1
    store.delete("a")
    store.delete("missing")
    assert store.get("a") is None
    assert len(store) == 0


async def test_broken_transport_becomes_error_result(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", ATTENDANCE_PATH, httpx.ProxyError("proxy down"))

    result = await service.attendance("chat-42")

    assert isinstance(result, ErrorResult)
    assert "ProxyError" in result.error
    assert not result.requires_retry
    assert len(vtop.requests) == 1


async def test_cached_assignments_keep_every_semester(service, store, vtop, session):
    store.set("chat-42", session)
    vtop.on("POST", "/vtop/examinations/StudentDA", html(load_fixture("da_menu.html")))
    vtop.on("POST", "/vtop/examinations/doDigitalAssignment", html(load_fixture("da_list.html")))

    fresh = await service.digital_assignments("chat-42")
    cached = await service.digital_assignments("chat-42")

    assert len(vtop.calls("POST", "/vtop/examinations/doDigitalAssignment")) == 1
    assert [s.value for s in cached.semesters] == ["VL20242505", "VL20252601", "VL20242501"]
    assert cached == fresh
