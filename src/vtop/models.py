"""Pydantic models for VTOP sessions and scraped data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Scraped records are frozen: they are built once per scrape and never mutated.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionContext(BaseModel):
    """Tokens every authenticated VTOP request must carry.

    Scraped from inline script variables / hidden inputs of the dashboard
    that VTOP serves right after login.
    """

    model_config = ConfigDict(frozen=True)

    csrf_name: str = "_csrf"
    csrf_value: str
    authorized_id: str  # registration number, sent as authorizedID


class SemesterOption(BaseModel):
    """One <option> of a semester dropdown."""

    model_config = ConfigDict(frozen=True)

    value: str  # semesterSubId, e.g. "VL20252601"
    label: str  # e.g. "Fall Semester 2025-26"
    selected: bool = False


class AttendanceStatus(str, Enum):
    """Colour band of the attendance percentage cell."""

    EXCELLENT = "excellent"  # text-success
    GOOD = "good"  # no colour class
    WARNING = "warning"  # text-warning
    DANGER = "danger"  # text-danger


class AttendanceRecord(BaseModel):
    """One course row of the dashboard attendance table."""

    model_config = ConfigDict(frozen=True)

    course_code: str  # "BCSE302L"
    course_name: str
    course_type: str  # "Theory Only", "Lab Only", ...
    attendance_percent: float
    status: AttendanceStatus
    remarks: str = ""


class ExamRecord(BaseModel):
    """One 13-column row of the exam schedule table."""

    model_config = ConfigDict(frozen=True)

    sl_no: str
    course_code: str
    course_title: str
    course_type: str
    class_id: str
    slot: str
    exam_date: str
    exam_session: str  # "FN" / "AN"
    reporting_time: str
    exam_time: str
    venue: str
    seat_location: str
    seat_no: str


EXAM_TYPES: tuple[str, ...] = ("FAT", "CAT1", "CAT2")


class ExamSchedule(BaseModel):
    """Exam rows grouped by exam type, serialized under FAT/CAT1/CAT2."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    fat: list[ExamRecord] = Field(default_factory=list, alias="FAT")
    cat1: list[ExamRecord] = Field(default_factory=list, alias="CAT1")
    cat2: list[ExamRecord] = Field(default_factory=list, alias="CAT2")

    def by_type(self, exam_type: str) -> list[ExamRecord]:
        """Return the rows of one exam type ("FAT", "CAT1" or "CAT2")."""
        key = exam_type.upper()
        if key not in EXAM_TYPES:
            raise ValueError(f"Unknown exam type {exam_type!r}. Valid: {list(EXAM_TYPES)}")
        return getattr(self, key.lower())

    def total(self) -> int:
        return len(self.fat) + len(self.cat1) + len(self.cat2)


class AssignmentSummary(BaseModel):
    """One course row of the digital assignment listing."""

    model_config = ConfigDict(frozen=True)

    index: str
    class_number: str  # "VL2025260101665"
    course_code: str
    course_title: str
    upcoming_due: str = ""  # multiple due dates joined with " | "
    course_type: str = ""
    faculty_name: str = ""
    dashboard_ref: str | None = None  # classId for the details request


class AssignmentCourseInfo(BaseModel):
    """Header table of the assignment details page."""

    model_config = ConfigDict(frozen=True)

    semester: str
    course_code: str
    course_title: str
    course_type: str
    class_number: str


class AssignmentDetail(BaseModel):
    """One assessment row of the assignment details page."""

    model_config = ConfigDict(frozen=True)

    sl_no: str = ""
    title: str
    max_mark: str = ""
    weightage: str = ""
    due_date: str = ""
    due_date_color: str = "unknown"  # colour of the due date span
    has_question_paper: bool = False
    last_updated: str = "Not uploaded"
    can_upload: bool = False
    can_download: bool = False
    code: str | None = None  # hidden "code" input used by the upload form


class OpenHours(BaseModel):
    """One office-hours entry of a faculty profile."""

    model_config = ConfigDict(frozen=True)

    day: str
    timing: str


class FacultySummary(BaseModel):
    """One row of the employee search results."""

    model_config = ConfigDict(frozen=True)

    employee_id: str
    name: str
    designation: str = ""
    school: str = ""


class FacultyDetail(BaseModel):
    """Faculty profile. Every field is optional since profiles vary widely."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    designation: str | None = None
    department: str | None = None
    school: str | None = None
    email: str | None = None
    cabin: str | None = None
    photo_url: str | None = None
    open_hours: list[OpenHours] = Field(default_factory=list)


class Session(BaseModel):
    """Authenticated VTOP state for one application user.

    Created once by a successful login, read by every scraper, and refreshed
    only in its cached exam/assignment fields.
    """

    username: str
    cookies: dict[str, str] = Field(default_factory=dict)
    context: SessionContext | None = None
    dashboard_html: str = ""
    created_at: datetime = Field(default_factory=_utcnow)

    # Cached scrape results, each tagged with the semester it was fetched for
    exam_schedule: ExamSchedule | None = None
    exam_semester: SemesterOption | None = None
    assignments: list[AssignmentSummary] | None = None
    assignments_semester: SemesterOption | None = None
    assignments_semesters: list[SemesterOption] | None = None

    @property
    def is_usable(self) -> bool:
        """True if cookies, CSRF value and authorized id are all present."""
        return bool(
            self.username
            and self.cookies
            and self.context is not None
            and self.context.csrf_value
            and self.context.authorized_id
        )


class LoginSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    cookies: dict[str, str]
    context: SessionContext
    dashboard_html: str


class LoginFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: str
    requires_retry: bool = False


LoginResult = LoginSuccess | LoginFailure


class ErrorResult(BaseModel):
    """User-facing failure: never a raw exception."""

    model_config = ConfigDict(frozen=True)

    error: str
    requires_retry: bool = False


class ExamScheduleResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    semester: SemesterOption
    schedule: ExamSchedule


class DigitalAssignmentsResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    assignments: list[AssignmentSummary]
    semester: SemesterOption
    semesters: list[SemesterOption]


class AssignmentDetailsResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    course_info: AssignmentCourseInfo | None = None
    assignments: list[AssignmentDetail] = Field(default_factory=list)


class FacultySearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[FacultySummary]
    search_query: str
    timestamp: datetime = Field(default_factory=_utcnow)


class FacultyDetailsResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    details: FacultyDetail
    employee_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
