import pytest

from src.vtop.models import OpenHours
from src.vtop.pages.faculty import (
    get_faculty_details,
    get_faculty_search,
    parse_faculty_details,
    parse_faculty_results,
    parse_open_hours,
)
from tests.conftest import VTOP_URL, form_fields, html, load_fixture

SEARCH_PATH = "/vtop/hrms/EmployeeSearchForStudent"
DETAILS_PATH = "/vtop/hrms/EmployeeSearch1ForStudent"


def test_search_results_skip_header_and_rows_without_id():
    results = parse_faculty_results(load_fixture("faculty_search.html"))

    assert [r.employee_id for r in results] == ["10245", "10877"]
    assert results[0].name == "PRIYA RAMAN"
    assert results[0].designation == "Associate Professor Sr."
    assert results[1].school == "SENSE"


def test_profile_fields():
    details = parse_faculty_details(load_fixture("faculty_details.html"), VTOP_URL)

    assert details.name == "PRIYA RAMAN"
    assert details.designation == "Associate Professor Sr."
    assert details.department == "Department of Software Systems"
    assert details.school == "School of Computer Science and Engineering (SCOPE)"
    assert details.email == "priya.raman@vit.ac.in"
    assert details.cabin == "N/A"
    assert details.photo_url == f"{VTOP_URL}/vtop/users/images/photo/10245.jpg"
    assert details.open_hours == [
        OpenHours(day="MONDAY", timing="14:00 - 16:00"),
        OpenHours(day="WEDNESDAY", timing="10:00 - 11:00"),
    ]


def test_missing_fields_stay_empty():
    details = parse_faculty_details("<p>Profile unavailable</p>")
    assert details.name is None
    assert details.cabin is None
    assert details.photo_url is None
    assert details.open_hours == []


def test_unstyled_open_hours_rows_skip_their_header():
    page = """<h6>OPEN HOURS</h6><table><tbody>
      <tr><td>Week Day</td><td>Timings</td></tr>
      <tr><td>FRIDAY</td><td>15:00 - 17:00</td></tr>
    </tbody></table>"""
    assert parse_open_hours(page) == [OpenHours(day="FRIDAY", timing="15:00 - 17:00")]


def test_office_hours_table():
    page = """<b>Office Hours</b><table>
      <tr><td>Day</td><td>Time</td></tr>
      <tr><td>TUESDAY</td><td>09:00 - 10:00</td></tr>
    </table>"""
    assert parse_open_hours(page) == [OpenHours(day="TUESDAY", timing="09:00 - 10:00")]


def test_consultation_line_is_last_resort():
    assert parse_open_hours("<p>Consultation Hours: Thursday 2-4 PM</p>") == [
        OpenHours(day="Consultation Hours", timing="Thursday 2-4 PM")
    ]
    assert parse_open_hours("<p>Consultation Hours: N/A</p>") == []


async def test_search_sends_lower_cased_query(client, vtop, session):
    vtop.on("POST", SEARCH_PATH, html(load_fixture("faculty_search.html")))

    result = await get_faculty_search(session, "  Priya ", client)

    assert result.search_query == "Priya"
    assert len(result.results) == 2
    fields = form_fields(vtop.requests[0])
    assert fields["empId"] == "priya"
    assert fields["_csrf"] == "dash-csrf-token"


async def test_details_request(client, vtop, session):
    vtop.on("POST", DETAILS_PATH, html(load_fixture("faculty_details.html")))

    result = await get_faculty_details(session, "10245", client)

    assert result.employee_id == "10245"
    assert result.details.name == "PRIYA RAMAN"
    assert form_fields(vtop.requests[0])["empId"] == "10245"


@pytest.mark.parametrize("query", ["", "ab", "  a  ", None])
async def test_short_queries_are_rejected(session, query):
    with pytest.raises(ValueError, match="at least 3 characters"):
        await get_faculty_search(session, query)


async def test_blank_employee_id_is_rejected(session):
    with pytest.raises(ValueError, match="Employee ID is required"):
        await get_faculty_details(session, " ")
