"""
qbuilder/core/errors.py — Error taxonomy

Every error that reaches the HTTP layer is an AppError carrying its status
and a stable code; the Blueprint turns it into {"ok": False, "error", "code"}.
DocumentBuildError is the composer's only failure mode and never leaves the
orchestrator unwrapped.
"""


class AppError(Exception):
    """Base error with an HTTP status and a machine-readable code."""

    def __init__(self, message: str, status_code: int = 500,
                 code: str = "INTERNAL_ERROR", details=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def to_dict(self) -> dict:
        d = {"ok": False, "error": self.message, "code": self.code}
        if self.details is not None:
            d["details"] = self.details
        return d


class InvalidIdentifierError(AppError):
    def __init__(self, name: str, value):
        super().__init__(f"Invalid {name}: {value!r}", 400, "INVALID_ID")


class QuoteNotFoundError(AppError):
    def __init__(self, message: str = "Quote not found", code: str = "QUOTE_NOT_FOUND"):
        super().__init__(message, 404, code)


class QuoteConflictError(AppError):
    def __init__(self, message: str, code: str = "QUOTE_CONFLICT"):
        super().__init__(message, 409, code)


class PdfGenerationError(AppError):
    FONT_CODE = "PDF_FONT_ERROR"
    GENERIC_CODE = "PDF_GENERATION_FAILED"

    def __init__(self, message: str, font_error: bool = False):
        if font_error:
            super().__init__(
                "PDF generation failed: Hebrew font could not be loaded",
                500, self.FONT_CODE, details=message)
        else:
            super().__init__("PDF generation failed", 500, self.GENERIC_CODE, details=message)


class DocumentBuildError(Exception):
    """The composer could not produce a complete document."""

    @property
    def is_font_error(self) -> bool:
        msg = str(self).lower()
        return "font" in msg or "ttf" in msg
