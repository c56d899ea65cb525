"""VTOP portal client: CAPTCHA-solving login and HTML scrapers for student data.

Logs into vtop.vit.ac.in, keeps the resulting cookies + CSRF context as a
Session, and turns the portal's server-rendered pages (attendance, exam
schedule, digital assignments, faculty directory) into pydantic records.
"""

from src.vtop.captcha import CaptchaSolver, solve_captcha_from_base64
from src.vtop.config import VtopConfig, get_config
from src.vtop.context import extract_dashboard_context
from src.vtop.http import CookieJar, VtopHttpClient
from src.vtop.logging import get_logger, setup_logging
from src.vtop.login import LoginProtocol
from src.vtop.models import ErrorResult, LoginFailure, LoginSuccess, Session, SessionContext
from src.vtop.pages.assignments import get_assignment_details, get_digital_assignments
from src.vtop.pages.attendance import get_attendance
from src.vtop.pages.exams import get_exam_schedule
from src.vtop.pages.faculty import get_faculty_details, get_faculty_search
from src.vtop.service import VtopService, error_result
from src.vtop.store import InMemorySessionStore, SessionStore

__all__ = [
    "CaptchaSolver",
    "solve_captcha_from_base64",
    "VtopConfig",
    "get_config",
    "extract_dashboard_context",
    "CookieJar",
    "VtopHttpClient",
    "get_logger",
    "setup_logging",
    "LoginProtocol",
    "Session",
    "SessionContext",
    "LoginSuccess",
    "LoginFailure",
    "ErrorResult",
    "get_attendance",
    "get_exam_schedule",
    "get_digital_assignments",
    "get_assignment_details",
    "get_faculty_search",
    "get_faculty_details",
    "VtopService",
    "error_result",
    "SessionStore",
    "InMemorySessionStore",
]
