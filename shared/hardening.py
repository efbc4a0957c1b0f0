"""Boundary hardening utilities for the DOA service.

Provides user-friendly error formatting and input validation for values
arriving over HTTP: free-text search terms, DOA item codes, and user
emails.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (browse, calculator, storage).
        error_code: Machine-readable identifier (e.g. "STOR_010").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose SQL,
    file paths, or stack traces to the end user.
    """

    def format_browse_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised while listing or building browse data."""
        return self._format(error, component="browse", code_prefix="BRWS")

    def format_calculator_error(self, error: Exception) -> UserFriendlyError:
        """Format an approval-calculator error."""
        return self._format(error, component="calculator", code_prefix="CALC")

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a data-storage error.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="storage", code_prefix="STOR")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        """Shared formatting logic.

        Args:
            error: The caught exception.
            component: Subsystem name.
            code_prefix: Short prefix for error code.

        Returns:
            Structured error with safe user message.
        """
        message, suggestion, code_suffix = _classify_error(error)
        friendly = UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )
        logger.warning("%s error %s: %s", component, friendly.error_code, friendly.technical_detail)
        return friendly


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, ValidationError):
        return (
            "The request contained an invalid value.",
            "Check the highlighted field and try again.",
            "007",
        )
    if isinstance(error, sqlite3.IntegrityError):
        return (
            "The change conflicts with existing data.",
            "A record with the same name or key may already exist.",
            "010",
        )
    if isinstance(error, sqlite3.OperationalError):
        return (
            "The database is not available.",
            "Check that the database file exists and is writable.",
            "011",
        )
    if isinstance(error, PermissionError):
        return (
            "Permission denied when accessing a resource.",
            "Check file permissions and ensure the application has access.",
            "002",
        )
    if isinstance(error, json.JSONDecodeError):
        return (
            "A stored setting contains invalid JSON.",
            "Save the setting again from the admin page.",
            "006",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 2. Input Validation
# ---------------------------------------------------------------------------

# Dot-separated positive integers, one optional trailing dot
_CODE_PATTERN = re.compile(r"^\d+(\.\d+)*\.?$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure unless
    documented otherwise.
    """

    def sanitize_string(
        self,
        value: str | None,
        *,
        max_length: int = 200,
    ) -> str:
        """Sanitize a user-provided search string.

        Strips control characters and surrounding whitespace, then
        truncates. HTML is left alone: terms like "R&D" must still match.

        Args:
            value: Raw user string.
            max_length: Maximum allowed length after sanitization.

        Returns:
            Cleaned string ("" for None).
        """
        if not value:
            return ""
        cleaned = _strip_control_chars(value).strip()
        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        return cleaned

    def validate_code(self, code: str) -> str:
        """Check that *code* looks like a DOA item code.

        Args:
            code: Raw code, e.g. "4.2.3" or "3.8.1.".

        Returns:
            The code with surrounding whitespace removed.

        Raises:
            ValidationError: If the code is not dot-separated integers.
        """
        stripped = code.strip()
        if not _CODE_PATTERN.match(stripped):
            raise ValidationError(f"Invalid item code: {code!r}")
        return stripped

    def validate_email(self, email: str) -> str:
        """Check and normalize an email address.

        Returns:
            The email, trimmed and lower-cased.

        Raises:
            ValidationError: If the address is malformed.
        """
        normalized = email.strip().lower()
        if not _EMAIL_PATTERN.match(normalized):
            raise ValidationError(f"Invalid email address: {email!r}")
        return normalized


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace.

    Args:
        text: Input string.

    Returns:
        Cleaned string.
    """
    return _CONTROL_CHARS.sub("", text)
