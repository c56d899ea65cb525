"""VtopService - per-user facade over login, session storage and scrapers.

Callers identify a user by an opaque key (chat user id, web session id...)
and get back either a result model or an ErrorResult; no VtopError ever
escapes this layer.

Usage:
    async with VtopService(InMemorySessionStore()) as vtop:
        session = await vtop.login("user-1", "21BCE1234", password)
        attendance = await vtop.attendance("user-1")
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from src.vtop.captcha import CaptchaSolver
from src.vtop.config import VtopConfig, get_config
from src.vtop.errors import (
    CaptchaError,
    InvalidSessionError,
    SessionExpiredError,
    TransientError,
    VtopError,
)
from src.vtop.http import XHR_HEADERS, CookieJar, VtopHttpClient
from src.vtop.logging import get_logger
from src.vtop.login import LoginProtocol, session_from_login
from src.vtop.models import (
    AssignmentDetailsResult,
    AttendanceRecord,
    DigitalAssignmentsResult,
    ErrorResult,
    ExamScheduleResult,
    FacultyDetailsResult,
    FacultySearchResult,
    LoginFailure,
    Session,
)
from src.vtop.pages.assignments import get_assignment_details, get_digital_assignments
from src.vtop.pages.attendance import get_attendance
from src.vtop.pages.exams import get_exam_schedule
from src.vtop.pages.faculty import get_faculty_details, get_faculty_search
from src.vtop.store import SessionStore

logger = get_logger(__name__)

T = TypeVar("T")

LOGOUT_PATH = "/vtop/logout"
NOT_LOGGED_IN_MESSAGE = "Not logged in to VTOP. Please log in first."


def error_result(exc: Exception) -> ErrorResult:
    """Convert a failure into the user-facing {error, requires_retry} shape.

    Transient network failures and CAPTCHA trouble are worth retrying;
    everything else (bad input, expired session, portal errors) is not.
    """
    if isinstance(exc, SessionExpiredError):
        return ErrorResult(error="Your VTOP session has expired. Please log in again.")
    if isinstance(exc, InvalidSessionError):
        return ErrorResult(error=NOT_LOGGED_IN_MESSAGE)
    if isinstance(exc, TransientError):
        return ErrorResult(error=f"VTOP is not responding: {exc}", requires_retry=True)
    if isinstance(exc, CaptchaError):
        return ErrorResult(error=str(exc), requires_retry=True)
    if isinstance(exc, (VtopError, ValueError)):
        return ErrorResult(error=str(exc))
    raise TypeError(f"Cannot convert {type(exc).__name__} to ErrorResult") from exc


class VtopService:
    """Login, session bookkeeping and data access for many users."""

    def __init__(
        self,
        store: SessionStore,
        client: VtopHttpClient | None = None,
        solver: CaptchaSolver | None = None,
        config: VtopConfig | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Where sessions are kept between calls.
            client: Shared HTTP client. If omitted, one is created and closed
                by aclose().
            solver: CAPTCHA solver (default: weights from config).
            config: VTOP configuration (defaults to the client's / singleton).
        """
        self.store = store
        self.config = config or (client.config if client else get_config())
        self._owns_client = client is None
        self.client = client or VtopHttpClient(self.config)
        self.solver = solver or CaptchaSolver()
        self.login_protocol = LoginProtocol(self.client, solver=self.solver, config=self.config)

    async def __aenter__(self) -> "VtopService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @property
    def _page_options(self) -> dict[str, Any]:
        return {"client": self.client, "solver": self.solver, "config": self.config}

    # Session lifecycle

    async def login(self, user_key: str, username: str, password: str) -> Session | ErrorResult:
        """Log in, warm the exam/assignment caches and store the session."""
        if not username or not password:
            return ErrorResult(error="Username and password required")

        result = await self.login_protocol.login(username, password)
        if isinstance(result, LoginFailure):
            return ErrorResult(error=result.error, requires_retry=result.requires_retry)

        session = session_from_login(username, result)
        await self._prefetch(session)
        self.store.set(user_key, session)
        logger.info("session_stored", user_key=user_key, username=username.upper())
        return session

    async def _prefetch(self, session: Session) -> None:
        """Best-effort cache warm-up; a failure here never fails the login."""
        try:
            exams = await get_exam_schedule(session, **self._page_options)
        except VtopError as e:
            logger.warning("prefetch_failed", target="exam_schedule", error=str(e))
        else:
            session.exam_schedule = exams.schedule
            session.exam_semester = exams.semester

        try:
            assignments = await get_digital_assignments(session, **self._page_options)
        except VtopError as e:
            logger.warning("prefetch_failed", target="digital_assignments", error=str(e))
        else:
            session.assignments = assignments.assignments
            session.assignments_semester = assignments.semester
            session.assignments_semesters = assignments.semesters

    def validate(self, user_key: str) -> Session | None:
        """Stored session if it is still usable; unusable ones are dropped."""
        session = self.store.get(user_key)
        if session is None:
            return None
        if not session.is_usable:
            logger.info("session_discarded", user_key=user_key, reason="unusable")
            self.store.delete(user_key)
            return None
        return session

    async def logout(self, user_key: str) -> None:
        """Tell VTOP we are leaving (best effort), then forget the session."""
        session = self.store.get(user_key)
        if session is not None and session.is_usable:
            try:
                response = await self.client.fetch_with_cookies(
                    "POST",
                    self.client.url(LOGOUT_PATH),
                    CookieJar(session.cookies),
                    data={session.context.csrf_name: session.context.csrf_value},
                    headers=XHR_HEADERS,
                )
            except VtopError as e:
                logger.warning("remote_logout_failed", user_key=user_key, error=str(e))
            else:
                logger.info("remote_logout", user_key=user_key, status=response.status_code)
        self.store.delete(user_key)
        logger.info("session_deleted", user_key=user_key)

    async def _with_session(
        self,
        user_key: str,
        operation: str,
        call: Callable[[Session], Awaitable[T]],
    ) -> T | ErrorResult:
        session = self.validate(user_key)
        if session is None:
            return ErrorResult(error=NOT_LOGGED_IN_MESSAGE)
        try:
            return await call(session)
        except (SessionExpiredError, InvalidSessionError) as e:
            logger.info("session_invalidated", user_key=user_key, operation=operation, error=str(e))
            self.store.delete(user_key)
            return error_result(e)
        except (VtopError, ValueError) as e:
            logger.warning(
                "operation_failed",
                user_key=user_key,
                operation=operation,
                error=str(e),
                type=type(e).__name__,
            )
            return error_result(e)

    # Data access

    async def attendance(self, user_key: str) -> list[AttendanceRecord] | ErrorResult:
        async def call(session: Session) -> list[AttendanceRecord]:
            return await get_attendance(session, **self._page_options)

        return await self._with_session(user_key, "attendance", call)

    async def exam_schedule(
        self,
        user_key: str,
        semester_label: str | None = None,
        *,
        refresh: bool = False,
    ) -> ExamScheduleResult | ErrorResult:
        """Exam schedule; served from the login-time cache unless a semester
        is requested or refresh is set."""

        async def call(session: Session) -> ExamScheduleResult:
            cached = session.exam_schedule is not None and session.exam_semester is not None
            if cached and not refresh and semester_label is None:
                logger.debug("exam_schedule_cache_hit", user_key=user_key)
                return ExamScheduleResult(
                    semester=session.exam_semester, schedule=session.exam_schedule
                )
            result = await get_exam_schedule(session, semester_label, **self._page_options)
            session.exam_schedule = result.schedule
            session.exam_semester = result.semester
            self.store.set(user_key, session)
            return result

        return await self._with_session(user_key, "exam_schedule", call)

    async def digital_assignments(
        self,
        user_key: str,
        semester_label: str | None = None,
        *,
        refresh: bool = False,
    ) -> DigitalAssignmentsResult | ErrorResult:
        async def call(session: Session) -> DigitalAssignmentsResult:
            cached = (
                session.assignments is not None
                and session.assignments_semester is not None
                and session.assignments_semesters is not None
            )
            if cached and not refresh and semester_label is None:
                logger.debug("assignments_cache_hit", user_key=user_key)
                return DigitalAssignmentsResult(
                    assignments=session.assignments,
                    semester=session.assignments_semester,
                    semesters=session.assignments_semesters,
                )
            result = await get_digital_assignments(session, semester_label, **self._page_options)
            session.assignments = result.assignments
            session.assignments_semester = result.semester
            session.assignments_semesters = result.semesters
            self.store.set(user_key, session)
            return result

        return await self._with_session(user_key, "digital_assignments", call)

    async def assignment_details(
        self, user_key: str, class_id: str
    ) -> AssignmentDetailsResult | ErrorResult:
        async def call(session: Session) -> AssignmentDetailsResult:
            return await get_assignment_details(session, class_id, **self._page_options)

        return await self._with_session(user_key, "assignment_details", call)

    async def faculty_search(self, user_key: str, query: str) -> FacultySearchResult | ErrorResult:
        async def call(session: Session) -> FacultySearchResult:
            return await get_faculty_search(session, query, **self._page_options)

        return await self._with_session(user_key, "faculty_search", call)

    async def faculty_details(
        self, user_key: str, employee_id: str
    ) -> FacultyDetailsResult | ErrorResult:
        async def call(session: Session) -> FacultyDetailsResult:
            return await get_faculty_details(session, employee_id, **self._page_options)

        return await self._with_session(user_key, "faculty_details", call)
