import pytest

from src.vtop.errors import InvalidSessionError, PortalResponseError, SessionExpiredError
from src.vtop.models import AttendanceStatus
from src.vtop.pages.attendance import get_attendance, parse_attendance
from tests.conftest import form_fields, html, load_fixture, login_page, redirect

DETAILS_PATH = "/vtop/get/dashboard/current/semester/course/details"


def test_parse_dashboard_statuses():
    records = parse_attendance(load_fixture("dashboard.html"))

    assert [r.course_code for r in records] == ["BCSE302L", "BCSE306L", "BMAT202P", "BHUM101N"]
    assert [r.status for r in records] == [
        AttendanceStatus.EXCELLENT,
        AttendanceStatus.WARNING,
        AttendanceStatus.DANGER,
        AttendanceStatus.GOOD,
    ]
    assert records[0].course_name == "Database Systems"
    assert records[0].course_type == "Theory Only"
    assert records[0].attendance_percent == 92.5
    assert records[2].course_name == "Probability & Statistics Lab"
    assert records[2].remarks == "Debarred risk"
    assert records[3].remarks == ""


def test_headed_table_without_course_data_div():
    page = """
      <table class="table"><thead><tr><th>Code - Course Name</th></tr></thead>
      <tbody>
        <tr class="text-center">
          <td><span class="fw-bold text-dark">BCSE101E</span><span class="text-dark">Programming</span></td>
          <td>Lab</td><td><span class="text-danger">70</span></td><td>Low</td>
        </tr>
      </tbody></table>"""
    (record,) = parse_attendance(page)
    assert record.course_code == "BCSE101E"
    assert record.status is AttendanceStatus.DANGER


def test_rows_without_code_or_name_are_skipped():
    page = """<div class="courseData"><table class="table">
      <tr class="text-center"><td><span class="fw-bold text-dark">ONLYCODE</span></td>
      <td>x</td><td><span>90</span></td><td></td></tr></table>"""
    assert parse_attendance(page) == []
    assert parse_attendance("") == []


async def test_cached_dashboard_needs_no_request(client, vtop, session):
    session.dashboard_html = load_fixture("dashboard.html")
    records = await get_attendance(session, client)
    assert len(records) == 4
    assert vtop.requests == []


async def test_empty_dashboard_falls_back_to_server(client, vtop, session):
    vtop.on("POST", DETAILS_PATH, html(load_fixture("dashboard.html")))

    records = await get_attendance(session, client)

    assert len(records) == 4
    (request,) = vtop.requests
    fields = form_fields(request)
    assert fields["authorizedID"] == "21BCE1234"
    assert fields["_csrf"] == "dash-csrf-token"
    assert fields["x"].endswith("GMT")
    assert request.headers["cookie"] == "JSESSIONID=node0abc; SERVERID=s1"


async def test_redirect_to_login_means_session_expired(client, vtop, session):
    vtop.on("POST", DETAILS_PATH, redirect("/vtop/login"))
    vtop.on("GET", "/vtop/login", html(login_page()))

    with pytest.raises(SessionExpiredError):
        await get_attendance(session, client)


async def test_http_error_is_reported(client, vtop, session):
    vtop.on("POST", DETAILS_PATH, html("forbidden", status=403))

    with pytest.raises(PortalResponseError) as info:
        await get_attendance(session, client)
    assert info.value.status_code == 403


async def test_unusable_session_is_rejected_before_any_request(client, vtop, session):
    session.cookies = {}
    with pytest.raises(InvalidSessionError):
        await get_attendance(session, client)
    assert vtop.requests == []
