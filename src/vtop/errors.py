"""Error hierarchy for VTOP login and scraping.

Transient failures (should retry) are separated from permanent failures
(should not retry) so tenacity can classify them automatically:

    AsyncRetrying(retry=retry_if_exception_type(TransientError), ...)

Everything raised by this package derives from VtopError, which lets the
service layer turn any failure into a structured ErrorResult.
"""


class VtopError(Exception):
    """Base exception for all VTOP errors."""

    pass


class TransientError(VtopError):
    """Temporary failure that may succeed on retry.

    Examples: request timeouts, connection resets, DNS hiccups, 5xx responses.
    """

    pass


class RequestFailedError(TransientError):
    """A request kept failing after all retry attempts were used."""

    pass


class PermanentError(VtopError):
    """Failure that won't succeed on retry.

    Examples: missing CSRF token, 4xx responses, undecodable CAPTCHA.
    """

    pass


class SessionExpiredError(PermanentError):
    """An authenticated request landed back on the login page.

    The stored session must be discarded and the user has to log in again.
    """

    pass


class InvalidSessionError(PermanentError):
    """Session is structurally unusable (missing cookies, context or username)."""

    pass


class ParseError(PermanentError):
    """A required token (CSRF value, semester list) is absent from the HTML."""

    pass


class PortalResponseError(PermanentError):
    """Non-retryable portal failure: a 4xx status or an unusable exchange
    (undecodable body, proxy or protocol error)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CaptchaError(PermanentError):
    """Base class for CAPTCHA solving failures."""

    pass


class CaptchaDimensionError(CaptchaError):
    """CAPTCHA image is not the expected 200x40 pixels."""

    pass


class CaptchaDecodeError(CaptchaError):
    """CAPTCHA payload is not a decodable base64 JPEG."""

    pass


class CaptchaModelError(CaptchaError):
    """Classifier weights are missing or have the wrong shape."""

    pass
