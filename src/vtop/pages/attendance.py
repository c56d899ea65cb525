"""AttendancePage - current-semester attendance from the VTOP dashboard.

The dashboard served right after login usually already contains the
attendance card, so the cached dashboard HTML is parsed first and the
server is only asked when that yields nothing.

DOM structure:
  div.courseData
    table.table
      thead -> th "Code - Course Name" | "Type" | "Attendance" | "Remarks"
      tr.text-center
        td -> span.fw-bold.text-dark (code) + span.text-dark (name)
        td -> course type
        td -> span.text-success|text-warning|text-danger (percentage)
        td -> remarks

POST /vtop/get/dashboard/current/semester/course/details returns the same
card as a fragment.
"""

import re

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.http import VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.models import AttendanceRecord, AttendanceStatus, Session
from src.vtop.pages.base import VtopPage, client_scope
from src.vtop.utils import iter_rows, row_cells, strip_tags

log = get_logger(__name__)

_COURSE_DATA_RE = re.compile(
    r"""<div[^>]*class=["'][^"']*courseData[^"']*["'][^>]*>[\s\S]*?</table>""",
    re.IGNORECASE,
)
_HEADED_TABLE_RE = re.compile(
    r"""<table[^>]*class=["'][^"']*table[^"']*["'][^>]*>[\s\S]*?<thead>[\s\S]*?"""
    r"""Code - Course Name[\s\S]*?</table>""",
    re.IGNORECASE,
)
_ROW_RE = re.compile(
    r"""<tr[^>]*class=["'][^"']*text-center[^"']*["'][^>]*>([\s\S]*?)</tr>""",
    re.IGNORECASE,
)
_CODE_RE = re.compile(r"""<span[^>]*class=["'][^"']*fw-bold[^"']*["'][^>]*>([^<]+)</span>""")
_TEXT_DARK_RE = re.compile(r"""<span([^>]*class=["'][^"']*text-dark[^"']*["'][^>]*)>([^<]+)</span>""")
_PERCENT_RE = re.compile(r"<span[^>]*>([\d.]+)</span>")

_STATUS_CLASSES: tuple[tuple[str, AttendanceStatus], ...] = (
    ("text-success", AttendanceStatus.EXCELLENT),
    ("text-warning", AttendanceStatus.WARNING),
    ("text-danger", AttendanceStatus.DANGER),
)


def _course_name(cell: str) -> str:
    spans = _TEXT_DARK_RE.findall(cell)
    if len(spans) >= 2:
        return strip_tags(spans[1][1])
    if len(spans) == 1 and "fw-bold" not in spans[0][0]:
        return strip_tags(spans[0][1])
    return ""


def _status(cell: str) -> AttendanceStatus:
    for css_class, status in _STATUS_CLASSES:
        if css_class in cell:
            return status
    return AttendanceStatus.GOOD


def parse_attendance_rows(table_html: str) -> list[AttendanceRecord]:
    """Parse text-center rows with at least 4 cells into AttendanceRecords."""
    records = []
    for row in iter_rows(table_html, _ROW_RE):
        if "<th" in row and "Code - Course Name" in row:
            continue
        cells = row_cells(row)
        if len(cells) < 4:
            continue

        code_match = _CODE_RE.search(cells[0])
        code = strip_tags(code_match.group(1)) if code_match else ""
        name = _course_name(cells[0])
        if not (code and name):
            continue

        percent_match = _PERCENT_RE.search(cells[2])
        records.append(
            AttendanceRecord(
                course_code=code,
                course_name=name,
                course_type=strip_tags(cells[1]),
                attendance_percent=float(percent_match.group(1)) if percent_match else 0.0,
                status=_status(cells[2]),
                remarks=strip_tags(cells[3]),
            )
        )
    return records


def parse_attendance(html: str | None) -> list[AttendanceRecord]:
    """Locate the attendance table in a dashboard page and parse it."""
    if not html:
        return []

    match = _COURSE_DATA_RE.search(html)
    if match:
        return parse_attendance_rows(match.group(0))

    match = _HEADED_TABLE_RE.search(html)
    if match:
        log.debug("attendance_table_fallback")
        return parse_attendance_rows(match.group(0))

    log.debug("attendance_table_missing", length=len(html))
    return []


class AttendancePage(VtopPage):
    """Dashboard attendance card."""

    URL_PATH = "get/dashboard/current/semester/course/details"

    async def fetch(self) -> list[AttendanceRecord]:
        records = parse_attendance(self.session.dashboard_html)
        if records:
            log.info("attendance_from_dashboard", courses=len(records))
            return records

        html = await self.post(self.URL_PATH)
        records = parse_attendance(html)
        log.info("attendance_fetched", courses=len(records))
        return records


async def get_attendance(
    session: Session,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> list[AttendanceRecord]:
    """Attendance for every course of the current semester.

    Raises:
        InvalidSessionError: Session lacks cookies or context.
        SessionExpiredError: VTOP redirected to the login page.
    """
    async with client_scope(client, config) as http:
        return await AttendancePage(session, http, solver=solver, config=config).fetch()
