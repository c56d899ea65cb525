from src.vtop.models import ExamSchedule, SemesterOption, Session
from src.vtop.pages import base
from src.vtop.pages.base import VtopPage, parse_semester_options
from tests.conftest import html


async def test_restored_session_sends_identical_requests(client, vtop, session, monkeypatch):
    monkeypatch.setattr(base, "utc_timestamp", lambda: "Mon, 19 Oct 2026 10:00:00 GMT")
    vtop.on("POST", "/vtop/examinations/StudExamSchedule", html("<div>ok</div>"))
    restored = Session.model_validate_json(session.model_dump_json())

    for s in (session, restored):
        await VtopPage(s, client).post("examinations/StudExamSchedule")

    original, replay = vtop.requests
    assert original.content == replay.content
    assert dict(original.headers) == dict(replay.headers)
    assert restored == session


def test_cached_results_survive_serialization(session):
    session.exam_schedule = ExamSchedule()
    session.exam_semester = SemesterOption(value="VL20252601", label="Fall Semester 2025-26")
    restored = Session.model_validate_json(session.model_dump_json())
    assert restored.exam_semester == session.exam_semester
    assert restored.exam_schedule.total() == 0


async def test_page_never_mutates_session_cookies(client, vtop, session):
    vtop.on("POST", "/vtop/x", html("<div>ok</div>", cookies=("JSESSIONID=rotated",)))

    page = VtopPage(session, client)
    await page.post("x")

    assert session.cookies == {"JSESSIONID": "node0abc", "SERVERID": "s1"}
    assert page.jar.get("JSESSIONID") == "rotated"


def test_usable_session_needs_every_token(session):
    assert session.is_usable
    assert not session.model_copy(update={"cookies": {}}).is_usable
    assert not session.model_copy(update={"context": None}).is_usable


def test_semester_dropdown_scope():
    page = """
      <select id="other"><option value="X1">Something Else</option></select>
      <select id="semesterSubId"><option value="VL1" selected>Fall Semester 2025-26</option></select>"""
    assert [o.value for o in parse_semester_options(page)] == ["X1", "VL1"]
    (only,) = parse_semester_options(page, select_only=True)
    assert only.value == "VL1"
