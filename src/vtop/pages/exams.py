"""ExamSchedulePage - FAT / CAT1 / CAT2 seating schedule.

Two POSTs:
  examinations/StudExamSchedule (verifyMenu=true)
    -> select#semesterSubId with one <option> per semester
  examinations/doSearchExamScheduleForStudent (semesterSubId)
    -> schedule table

DOM structure of the schedule:
  div.fixedTableContainer
    table
      tr.tableContent > td.panelHead-secondary "FAT"    (section header)
      tr.tableContent > 13 x td                        (one exam)
        S.No | Course Code | Course Title | Type | Class ID | Slot |
        Exam Date | Session | Reporting Time | Exam Time | Venue |
        Seat Location | Seat No.
      tr.tableContent > td.panelHead-secondary "CAT1"
      ...

Sections can appear in any order and any of them may be missing.
"""

import re

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.errors import ParseError
from src.vtop.http import VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.models import ExamRecord, ExamSchedule, ExamScheduleResult, Session
from src.vtop.pages.base import VtopPage, choose_semester, client_scope, parse_semester_options
from src.vtop.utils import iter_rows, row_texts

log = get_logger(__name__)

_CONTAINER_RE = re.compile(
    r"""<div[^>]*class=["'][^"']*fixedTableContainer[^"']*["'][^>]*>([\s\S]*?)</div>""",
    re.IGNORECASE,
)
_SECTION_HEADER_RE = re.compile(
    r"""<tr[^>]*class=["'][^"']*tableContent[^"']*["'][^>]*>\s*"""
    r"""<td[^>]*class=["'][^"']*panelHead-secondary[^"']*["'][^>]*>"""
    r"""(FAT|CAT2|CAT1)(?:<button[^>]*>.*?</button>)?</td>\s*</tr>""",
    re.IGNORECASE,
)
_ROW_RE = re.compile(
    r"""<tr[^>]*class=["'][^"']*tableContent[^"']*["'][^>]*>([\s\S]*?)</tr>""",
    re.IGNORECASE,
)

EXAM_COLUMNS: tuple[str, ...] = (
    "sl_no",
    "course_code",
    "course_title",
    "course_type",
    "class_id",
    "slot",
    "exam_date",
    "exam_session",
    "reporting_time",
    "exam_time",
    "venue",
    "seat_location",
    "seat_no",
)


def parse_exam_rows(html: str) -> list[ExamRecord]:
    """Parse every 13+ cell data row; header and colspan rows are skipped."""
    records = []
    for row in iter_rows(html, _ROW_RE):
        if "panelHead-secondary" in row or "colspan" in row:
            continue
        cells = row_texts(row)
        if len(cells) < len(EXAM_COLUMNS):
            continue
        records.append(ExamRecord(**dict(zip(EXAM_COLUMNS, cells))))
    return records


def parse_exam_schedule(html: str) -> ExamSchedule:
    """Split the schedule table on its FAT/CAT1/CAT2 header rows."""
    container = _CONTAINER_RE.search(html or "")
    if not container:
        log.warning("exam_table_missing")
        return ExamSchedule()

    table = container.group(1)
    headers = list(_SECTION_HEADER_RE.finditer(table))
    sections: dict[str, list[ExamRecord]] = {}
    for position, header in enumerate(headers):
        end = headers[position + 1].start() if position + 1 < len(headers) else len(table)
        sections[header.group(1).lower()] = parse_exam_rows(table[header.end():end])

    return ExamSchedule(**sections)


class ExamSchedulePage(VtopPage):
    """Exam schedule screen under Examinations."""

    MENU_PATH = "examinations/StudExamSchedule"
    SEARCH_PATH = "examinations/doSearchExamScheduleForStudent"

    async def fetch(self, semester_label: str | None = None) -> ExamScheduleResult:
        menu_html = await self.post(self.MENU_PATH, self.auth_params(verifyMenu="true"))

        semesters = parse_semester_options(menu_html)
        if not semesters:
            raise ParseError("No semesters found in exam schedule page")
        semester = choose_semester(semesters, semester_label)
        log.info("exam_semester_selected", semester=semester.label, available=len(semesters))

        html = await self.post(
            self.SEARCH_PATH,
            self.auth_params(semesterSubId=semester.value),
            delay=self.config.detail_delay_seconds,
        )
        schedule = parse_exam_schedule(html)
        log.info(
            "exam_schedule_fetched",
            fat=len(schedule.fat),
            cat1=len(schedule.cat1),
            cat2=len(schedule.cat2),
        )
        return ExamScheduleResult(semester=semester, schedule=schedule)


async def get_exam_schedule(
    session: Session,
    semester_label: str | None = None,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> ExamScheduleResult:
    """Exam schedule for semester_label (or the portal's current semester).

    Raises:
        ParseError: The semester dropdown has no options.
        SessionExpiredError: VTOP redirected to the login page.
    """
    async with client_scope(client, config) as http:
        page = ExamSchedulePage(session, http, solver=solver, config=config)
        return await page.fetch(semester_label)
