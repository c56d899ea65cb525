"""DigitalAssignmentPage - per-course digital assignment (DA) listing and details.

Listing, two POSTs:
  examinations/StudentDA (verifyMenu=true, XHR)
    -> select#semesterSubId
  examinations/doDigitalAssignment (multipart/form-data, XHR)
    -> div#fixedTableContainer table

Listing rows (tr.tableContent, 7 or 8 cells):
  Sl.No | Class Nbr | Course Code | Course Title | [Upcoming Due] |
  Course Type | Faculty
  The optional "Upcoming Due" cell separates several dates with <br>.

The classId needed for the details request is not always present in the row;
it is looked for in myFunction('...') handlers, other onclick arguments,
data-* attributes and quoted VL... ids, and the class number is used when
none of those match.

Details, one POST:
  examinations/processDigitalAssignment (classId)
    table.customTable #1  -> one tableContent row:
        Semester | Course Code | Course Title | Course Type | Class Nbr
    table.customTable #2  -> header with "Document Details", then rows:
        Sl.No | Title | Max Mark | Weightage % | Due Date (coloured span) |
        QP | Last Updated | Upload (pencil icon, hidden code input) |
        Download (href, or text-danger when nothing uploaded)
"""

import re

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig
from src.vtop.errors import ParseError, PortalResponseError, TransientError
from src.vtop.http import VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.models import (
    AssignmentCourseInfo,
    AssignmentDetail,
    AssignmentDetailsResult,
    AssignmentSummary,
    DigitalAssignmentsResult,
    SemesterOption,
    Session,
)
from src.vtop.pages.base import VtopPage, choose_semester, client_scope, parse_semester_options
from src.vtop.utils import first_match, iter_rows, row_cells, row_texts, strip_tags

log = get_logger(__name__)

_CONTAINER_RE = re.compile(
    r"""<div[^>]+id=["']fixedTableContainer["'][^>]*>[\s\S]*?</table>""", re.IGNORECASE
)
_LISTING_ROW_RE = re.compile(
    r"""<tr[^>]*class=["']tableContent["'][^>]*>([\s\S]*?)</tr>""", re.IGNORECASE
)
_CONTENT_ROW_RE = re.compile(
    r"""<tr[^>]*class=["'][^"']*tableContent[^"']*["'][^>]*>([\s\S]*?)</tr>""",
    re.IGNORECASE,
)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)

_COURSE_TABLE_RE = re.compile(
    r"""<table[^>]*class=["']customTable["'][^>]*>[\s\S]*?"""
    r"""<tr[^>]*class=["'][^"']*tableContent[^"']*["'][^>]*>([\s\S]*?)</tr>[\s\S]*?</table>""",
    re.IGNORECASE,
)
_DOCUMENT_TABLE_RE = re.compile(
    r"""<table[^>]*class=["']customTable["'][^>]*>[\s\S]*?"""
    r"""<tr[^>]*class=["'][^"']*tableHeader[^"']*["'][^>]*>[\s\S]*?"""
    r"""<td[^>]*colspan=["']3["'][^>]*>Document Details</td>[\s\S]*?</tr>([\s\S]*?)</table>""",
    re.IGNORECASE,
)
_DUE_SPAN_RE = re.compile(
    r"""<span[^>]*style=["'][^"']*color:\s*(\w+)[^"']*["'][^>]*>([^<]+)</span>""",
    re.IGNORECASE,
)
_CODE_INPUT_RE = re.compile(r"""name=["']code["'][^>]*value=["']([^"']+)["']""", re.IGNORECASE)

_MY_FUNCTION_RE = re.compile(r"""myFunction\(['"]([^'"]+)['"]\)""", re.IGNORECASE)
_ONCLICK_RE = re.compile(r"""onclick=["']([^"']*\(['"]([^'"]+)['"]\)[^"']*)["']""", re.IGNORECASE)
_DATA_ATTR_RE = re.compile(r"""data-[^=]*=["']([^"']+)["']""", re.IGNORECASE)
_CLASS_ID_RE = re.compile(r"""['"](VL\d+)['"]""", re.IGNORECASE)


def _search_group(pattern: re.Pattern[str], group: int = 1):
    def strategy(html: str) -> str | None:
        match = pattern.search(html)
        return match.group(group) if match else None

    return strategy


DASHBOARD_REF_STRATEGIES = (
    _search_group(_MY_FUNCTION_RE),
    _search_group(_ONCLICK_RE, 2),
    _search_group(_DATA_ATTR_RE),
    _search_group(_CLASS_ID_RE),
)


def parse_assignments(html: str) -> list[AssignmentSummary]:
    """Parse the DA listing table (falls back to scanning the whole page)."""
    if not html:
        return []
    container = _CONTAINER_RE.search(html)
    target = container.group(0) if container else html

    assignments = []
    for row in iter_rows(target, _LISTING_ROW_RE):
        raw = row_cells(row)
        cells = [strip_tags(cell) for cell in raw]
        if len(cells) < 7:
            continue

        if len(cells) >= 8:
            upcoming_due = strip_tags(_BR_RE.sub(" | ", raw[4]))
            course_type, faculty_name = cells[5], cells[6]
        else:
            upcoming_due = ""
            course_type, faculty_name = cells[4], cells[5]

        dashboard_ref, strategy = first_match(DASHBOARD_REF_STRATEGIES, row)
        if dashboard_ref is None and cells[1]:
            log.debug("dashboard_ref_fallback", class_number=cells[1])
            dashboard_ref = cells[1]
        elif dashboard_ref is not None:
            log.debug("dashboard_ref_found", strategy=strategy + 1, course_code=cells[2])

        assignments.append(
            AssignmentSummary(
                index=cells[0],
                class_number=cells[1],
                course_code=cells[2],
                course_title=cells[3],
                upcoming_due=upcoming_due,
                course_type=course_type,
                faculty_name=faculty_name,
                dashboard_ref=dashboard_ref or None,
            )
        )
    return assignments


def parse_assignment_details(html: str) -> AssignmentDetailsResult:
    """Parse the course header and the per-assessment document rows."""
    course_info = None
    course_match = _COURSE_TABLE_RE.search(html or "")
    if course_match:
        cells = row_texts(course_match.group(1))
        if len(cells) >= 5:
            course_info = AssignmentCourseInfo(
                semester=cells[0],
                course_code=cells[1],
                course_title=cells[2],
                course_type=cells[3],
                class_number=cells[4],
            )

    details = []
    document_match = _DOCUMENT_TABLE_RE.search(html or "")
    if document_match:
        for row in iter_rows(document_match.group(1), _CONTENT_ROW_RE):
            cells = row_cells(row)
            if len(cells) < 9:
                continue

            due_match = _DUE_SPAN_RE.search(cells[4])
            code_match = _CODE_INPUT_RE.search(cells[7])
            details.append(
                AssignmentDetail(
                    sl_no=strip_tags(cells[0]),
                    title=strip_tags(cells[1]),
                    max_mark=strip_tags(cells[2]),
                    weightage=strip_tags(cells[3]),
                    due_date=due_match.group(2).strip() if due_match else strip_tags(cells[4]),
                    due_date_color=due_match.group(1) if due_match else "unknown",
                    # An empty QP cell still carries a little markup whitespace
                    has_question_paper=len(cells[5].strip()) > 10,
                    last_updated=strip_tags(cells[6]) or "Not uploaded",
                    can_upload="bi-pencil-fill" in cells[7] or "editAssignment" in cells[7],
                    can_download="text-danger" not in cells[8] and "href" in cells[8],
                    code=code_match.group(1) if code_match else None,
                )
            )

    return AssignmentDetailsResult(course_info=course_info, assignments=details)


class DigitalAssignmentPage(VtopPage):
    """Digital assignment screen under Examinations."""

    MENU_PATH = "examinations/StudentDA"
    LIST_PATH = "examinations/doDigitalAssignment"
    DETAILS_PATH = "examinations/processDigitalAssignment"

    async def fetch_semester(self, semester: SemesterOption) -> str:
        return await self.post(
            self.LIST_PATH,
            self.auth_params(semesterSubId=semester.value),
            multipart=True,
            xhr=True,
            delay=self.config.detail_delay_seconds,
        )

    async def fetch(self, semester_label: str | None = None) -> DigitalAssignmentsResult:
        menu_html = await self.post(self.MENU_PATH, self.auth_params(verifyMenu="true"), xhr=True)

        semesters = parse_semester_options(menu_html, select_only=True)
        if not semesters:
            raise ParseError("No semesters available in digital assignment page")
        semester = choose_semester(semesters, semester_label, self.config.preferred_semester)
        log.info("da_semester_selected", semester=semester.label, available=len(semesters))

        html = menu_html
        try:
            html = await self.fetch_semester(semester)
        except (PortalResponseError, TransientError) as e:
            log.warning("da_semester_failed", semester=semester.label, error=str(e))
            alternatives = [s for s in semesters if s.value != semester.value]
            for alternative in alternatives[: self.config.max_alternative_semesters]:
                try:
                    html = await self.fetch_semester(alternative)
                except (PortalResponseError, TransientError) as alt_error:
                    log.warning(
                        "da_semester_failed", semester=alternative.label, error=str(alt_error)
                    )
                    continue
                semester = alternative
                break
            else:
                log.info("da_using_initial_page")

        assignments = parse_assignments(html)
        log.info("da_fetched", semester=semester.label, assignments=len(assignments))
        return DigitalAssignmentsResult(
            assignments=assignments, semester=semester, semesters=semesters
        )

    async def fetch_details(self, class_id: str) -> AssignmentDetailsResult:
        html = await self.post(
            self.DETAILS_PATH,
            self.auth_params(classId=class_id),
            xhr=True,
            delay=self.config.detail_delay_seconds,
        )
        result = parse_assignment_details(html)
        log.info(
            "da_details_fetched",
            class_id=class_id,
            has_course_info=result.course_info is not None,
            assignments=len(result.assignments),
        )
        return result


async def get_digital_assignments(
    session: Session,
    semester_label: str | None = None,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> DigitalAssignmentsResult:
    """Courses with digital assignments for a semester.

    Raises:
        ParseError: The semester dropdown has no options.
        SessionExpiredError: VTOP redirected to the login page.
    """
    async with client_scope(client, config) as http:
        page = DigitalAssignmentPage(session, http, solver=solver, config=config)
        return await page.fetch(semester_label)


async def get_assignment_details(
    session: Session,
    class_id: str,
    client: VtopHttpClient | None = None,
    *,
    solver: CaptchaSolver | None = None,
    config: VtopConfig | None = None,
) -> AssignmentDetailsResult:
    """Assessment rows of one course, identified by its dashboard_ref."""
    if not class_id or not class_id.strip():
        raise ValueError("Class ID is required")
    async with client_scope(client, config) as http:
        page = DigitalAssignmentPage(session, http, solver=solver, config=config)
        return await page.fetch_details(class_id.strip())
