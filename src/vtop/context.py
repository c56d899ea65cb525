"""Session-context extraction from the post-login dashboard HTML."""

import re

from src.vtop.logging import get_logger
from src.vtop.models import SessionContext

logger = get_logger(__name__)

_CSRF_VALUE_VAR = re.compile(r"""var\s+csrfValue\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_CSRF_NAME_VAR = re.compile(r"""var\s+csrfName\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_AUTHORIZED_ID_PATTERNS = (
    re.compile(r"""var\s+id\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"""var\s+authorizedID\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"""id=["']authorizedIDX["'][^>]*value=["']([^"']+)["']""", re.IGNORECASE),
)
_CSRF_INPUT = re.compile(r"""name=["']_csrf["']\s+value=["']([^"']+)["']""", re.IGNORECASE)
_AUTHORIZED_ID_INPUT = re.compile(
    r"""name=["']authorizedID["'][^>]*value=["']([^"']+)["']""", re.IGNORECASE
)


def _search(pattern: re.Pattern[str], html: str) -> str | None:
    match = pattern.search(html)
    return match.group(1) if match else None


def extract_dashboard_context(html: str | None) -> SessionContext | None:
    """Pull (csrf name, csrf value, authorized id) out of the dashboard.

    Inline script variables win over hidden inputs. Returns None when the
    CSRF value or authorized id is missing, which means the page that looked
    like a successful login was not actually the authenticated dashboard.
    """
    if not html:
        return None

    csrf_value = _search(_CSRF_VALUE_VAR, html) or _search(_CSRF_INPUT, html)
    csrf_name = _search(_CSRF_NAME_VAR, html) or "_csrf"
    authorized_id = None
    for pattern in _AUTHORIZED_ID_PATTERNS:
        authorized_id = _search(pattern, html)
        if authorized_id:
            break
    authorized_id = authorized_id or _search(_AUTHORIZED_ID_INPUT, html)

    if not csrf_value or not authorized_id:
        logger.warning(
            "dashboard_context_missing",
            has_csrf=bool(csrf_value),
            has_authorized_id=bool(authorized_id),
        )
        return None

    return SessionContext(
        csrf_name=csrf_name, csrf_value=csrf_value, authorized_id=authorized_id
    )
