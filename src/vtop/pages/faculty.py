"""FacultyPage - employee search and faculty profiles (HRMS module).

Search:
  hrms/EmployeeSearchForStudent (empId = lower-cased query)
    tr[style*="text-align: center"]
      header row: "Name of the Faculty" on background-color #afbadc
      result row: Name | Designation | School | <button id="<employee id>">

Profile:
  hrms/EmployeeSearch1ForStudent (empId = employee id)
    label/value rows: <td><b>Designation</b></td><td>value</td>
      (the name label cell is styled background-color #ABA5BF)
    <img> with a data URI or an /images/ path
    OPEN HOURS table: tbody rows styled background-color #f2dede,
      Week Day | Timings

Open-hours markup differs between profiles, so several layouts are tried
in order and the first that yields rows wins.
"""

import re
from collections.abc import Callable

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.http import VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.models import (
    FacultyDetail,
    FacultyDetailsResult,
    FacultySearchResult,
    FacultySummary,
    OpenHours,
    Session,
)
from src.vtop.pages.base import VtopPage, client_scope
from src.vtop.utils import first_match, iter_rows, row_cells, row_texts, strip_tags

log = get_logger(__name__)

MIN_QUERY_LENGTH = 3

_RESULT_ROW_RE = re.compile(
    r"""<tr[^>]*style=["'][^"']*text-align:\s*center[^"']*["'][^>]*>([\s\S]*?)</tr>""",
    re.IGNORECASE,
)
_EMPLOYEE_ID_RE = re.compile(r"""id=["'](\d+)["']""")

_LABEL_VALUE = r"""<td[^>]*>\s*<b>\s*{label}\s*</b>\s*</td>\s*<td[^>]*>([\s\S]*?)</td>"""
_NAME_RE = re.compile(
    r"""<td[^>]*style=["'][^"']*background-color:\s*#ABA5BF[^"']*["'][^>]*>\s*"""
    r"""<b>Name of the Faculty\s*</b>\s*</td>\s*<td[^>]*>([\s\S]*?)</td>""",
    re.IGNORECASE,
)
_PROFILE_FIELDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("designation", re.compile(_LABEL_VALUE.format(label="Designation"), re.IGNORECASE)),
    ("department", re.compile(_LABEL_VALUE.format(label="Name of Department"), re.IGNORECASE)),
    ("school", re.compile(_LABEL_VALUE.format(label=r"School / Centre Name"), re.IGNORECASE)),
    ("email", re.compile(_LABEL_VALUE.format(label="E-Mail Id"), re.IGNORECASE)),
)
_CABIN_RE = re.compile(_LABEL_VALUE.format(label="Cabin Number"), re.IGNORECASE)
_PHOTO_RE = re.compile(
    r"""<img[^>]*src=["']([^"']*(?:data:image|/images/|photo)[^"']*)["']""", re.IGNORECASE
)

_OPEN_HOURS_TBODY_RE = re.compile(r"OPEN HOURS[\s\S]*?<tbody>([\s\S]*?)</tbody>", re.IGNORECASE)
_STYLED_ROW_RE = re.compile(
    r"""<tr[^>]*background-color:\s*#f2dede[^>]*>([\s\S]*?)</tr>""", re.IGNORECASE
)
_ANY_ROW_RE = re.compile(r"<tr[^>]*>([\s\S]*?)</tr>", re.IGNORECASE)
_OFFICE_HOURS_TABLE_RE = re.compile(
    r"Office Hours[\s\S]*?<table[^>]*>([\s\S]*?)</table>", re.IGNORECASE
)
_CONSULTATION_RE = re.compile(r"Consultation Hours?\s*:?\s*([^<]+)", re.IGNORECASE)


def parse_faculty_results(html: str) -> list[FacultySummary]:
    """Search result rows; rows without a numeric employee id are dropped."""
    results = []
    for row in iter_rows(html or "", _RESULT_ROW_RE):
        if "Name of the Faculty" in row or "background-color: #afbadc" in row:
            continue
        cells = row_cells(row)
        if len(cells) < 4:
            continue
        id_match = _EMPLOYEE_ID_RE.search(row)
        if not id_match:
            continue
        results.append(
            FacultySummary(
                employee_id=id_match.group(1),
                name=strip_tags(cells[0]),
                designation=strip_tags(cells[1]),
                school=strip_tags(cells[2]),
            )
        )
    return results


def _hours_from_rows(
    html: str,
    pattern: re.Pattern[str],
    skip: Callable[[str, str], bool] | None = None,
) -> list[OpenHours]:
    hours = []
    for row in iter_rows(html, pattern):
        cells = row_texts(row)
        if len(cells) < 2 or not cells[0] or not cells[1]:
            continue
        if skip and skip(cells[0].lower(), cells[1].lower()):
            continue
        hours.append(OpenHours(day=cells[0], timing=cells[1]))
    return hours


def _styled_rows_under_heading(html: str) -> list[OpenHours]:
    match = _OPEN_HOURS_TBODY_RE.search(html)
    return _hours_from_rows(match.group(1), _STYLED_ROW_RE) if match else []


def _styled_rows_anywhere(html: str) -> list[OpenHours]:
    return _hours_from_rows(html, _STYLED_ROW_RE)


def _any_rows_under_heading(html: str) -> list[OpenHours]:
    match = _OPEN_HOURS_TBODY_RE.search(html)
    if not match:
        return []
    return _hours_from_rows(
        match.group(1),
        _ANY_ROW_RE,
        skip=lambda day, timing: "week day" in day or "timings" in timing,
    )


def _office_hours_table(html: str) -> list[OpenHours]:
    match = _OFFICE_HOURS_TABLE_RE.search(html)
    if not match:
        return []
    return _hours_from_rows(
        match.group(1),
        _ANY_ROW_RE,
        skip=lambda day, timing: "day" in day and "time" in timing,
    )


def _consultation_line(html: str) -> list[OpenHours]:
    match = _CONSULTATION_RE.search(html)
    if not match:
        return []
    timing = match.group(1).strip()
    if not timing or timing in ("N/A", "Not specified"):
        return []
    return [OpenHours(day="Consultation Hours", timing=timing)]


OPEN_HOURS_STRATEGIES: tuple[Callable[[str], list[OpenHours]], ...] = (
    _styled_rows_under_heading,
    _styled_rows_anywhere,
    _any_rows_under_heading,
    _office_hours_table,
    _consultation_line,
)


def parse_open_hours(html: str) -> list[OpenHours]:
    hours, strategy = first_match(OPEN_HOURS_STRATEGIES, html)
    if hours:
        log.debug("open_hours_found", strategy=strategy + 1, rows=len(hours))
        return hours
    return []


def parse_faculty_details(html: str, base_url: str = "") -> FacultyDetail:
    """Profile fields present on the page; everything else stays None."""
    html = html or ""
    fields: dict[str, object] = {}

    name_match = _NAME_RE.search(html)
    if name_match:
        fields["name"] = strip_tags(name_match.group(1))
    for field, pattern in _PROFILE_FIELDS:
        match = pattern.search(html)
        if match:
            fields[field] = strip_tags(match.group(1))
    cabin_match = _CABIN_RE.search(html)
    if cabin_match:
        fields["cabin"] = strip_tags(cabin_match.group(1)) or "N/A"

    photo_match = _PHOTO_RE.search(html)
    if photo_match:
        photo = photo_match.group(1).strip()
        if photo.startswith("/"):
            photo = base_url.rstrip("/") + photo
        fields["photo_url"] = photo

    fields["open_hours"] = parse_open_hours(html)
    return FacultyDetail(**fields)


class FacultyPage(VtopPage):
    """Employee search screen under HRMS."""

    SEARCH_PATH = "hrms/EmployeeSearchForStudent"
    DETAILS_PATH = "hrms/EmployeeSearch1ForStudent"

    async def search(self, query: str) -> FacultySearchResult:
        html = await self.post(
            self.SEARCH_PATH,
            self.auth_params(empId=query.lower()),
            delay=self.config.detail_delay_seconds,
        )
        results = parse_faculty_results(html)
        log.info("faculty_search_completed", query=query, results=len(results))
        return FacultySearchResult(results=results, search_query=query)

    async def details(self, employee_id: str) -> FacultyDetailsResult:
        html = await self.post(
            self.DETAILS_PATH,
            self.auth_params(empId=employee_id),
            delay=self.config.detail_delay_seconds,
        )
        details = parse_faculty_details(html, self.config.vtop_url)
        log.info(
            "faculty_details_fetched",
            employee_id=employee_id,
            has_name=details.name is not None,
            open_hours=len(details.open_hours),
        )
        return FacultyDetailsResult(details=details, employee_id=employee_id)


async def get_faculty_search(
    session: Session,
    query: str,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> FacultySearchResult:
    """Search faculty by name fragment.

    Raises:
        ValueError: query is shorter than MIN_QUERY_LENGTH after stripping.
    """
    query = (query or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        raise ValueError(f"Search query must be at least {MIN_QUERY_LENGTH} characters")
    async with client_scope(client, config) as http:
        page = FacultyPage(session, http, solver=solver, config=config)
        return await page.search(query)


async def get_faculty_details(
    session: Session,
    employee_id: str,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> FacultyDetailsResult:
    employee_id = (employee_id or "").strip()
    if not employee_id:
        raise ValueError("Employee ID is required")
    async with client_scope(client, config) as http:
        page = FacultyPage(session, http, solver=solver, config=config)
        return await page.details(employee_id)
