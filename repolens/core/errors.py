"""Closed error taxonomy for the scan pipeline.

Every component raises a :class:`RepoLensError` subclass carrying an
:class:`ErrorCode`. :func:`classify_error` is the single place where an
arbitrary exception is mapped to a code, a failure type and a refund
decision; the scan orchestrator and the HTTP layer both go through it.

Usage::

    from repolens.core.errors import classify_error

    try:
        await fetcher.checkout(url)
    except Exception as exc:
        classification = classify_error(exc)
        if classification.refund:
            await quota.refund(identifier)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    REPO_NOT_ACCESSIBLE = "REPO_NOT_ACCESSIBLE"
    REPO_TOO_LARGE = "REPO_TOO_LARGE"
    GEMINI_RATE_LIMIT = "GEMINI_RATE_LIMIT"
    MALICIOUS_CONTENT = "MALICIOUS_CONTENT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorType(str, Enum):
    CLIENT = "client"
    SERVER = "server"
    MALICIOUS = "malicious"


@dataclass(frozen=True)
class ErrorClassification:
    code: ErrorCode
    type: ErrorType
    refund: bool


# code -> (type, refund owed)
_TAXONOMY: dict[ErrorCode, tuple[ErrorType, bool]] = {
    ErrorCode.RATE_LIMIT_EXCEEDED: (ErrorType.CLIENT, False),
    ErrorCode.REPO_NOT_ACCESSIBLE: (ErrorType.CLIENT, True),
    ErrorCode.REPO_TOO_LARGE: (ErrorType.SERVER, True),
    ErrorCode.GEMINI_RATE_LIMIT: (ErrorType.SERVER, True),
    ErrorCode.MALICIOUS_CONTENT: (ErrorType.MALICIOUS, False),
    ErrorCode.UNKNOWN_ERROR: (ErrorType.SERVER, True),
}


class RepoLensError(Exception):
    """Base class for all typed pipeline failures."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_message: str = "Unexpected error while processing the scan"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class RateLimitExceeded(RepoLensError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Scan quota exceeded"


class RepositoryNotAccessible(RepoLensError):
    code = ErrorCode.REPO_NOT_ACCESSIBLE
    default_message = "Repository is not accessible"


class InvalidRepositoryUrl(RepositoryNotAccessible):
    default_message = "Invalid repository URL"


class RepositoryTooLarge(RepoLensError):
    code = ErrorCode.REPO_TOO_LARGE
    default_message = "Repository is too large or took too long to process"


class GeminiRateLimit(RepoLensError):
    code = ErrorCode.GEMINI_RATE_LIMIT
    default_message = "AI provider rate limit exceeded"


class MaliciousContent(RepoLensError):
    code = ErrorCode.MALICIOUS_CONTENT
    default_message = "Repository contains potentially malicious content"


class AnalysisError(RepoLensError):
    """Non-retriable or exhausted AI analysis failure with no specific code."""

    default_message = "Repository analysis failed"


def classify_error(exc: BaseException) -> ErrorClassification:
    """Map *exc* to its taxonomy entry; anything untyped is ``UNKNOWN_ERROR``."""
    code = exc.code if isinstance(exc, RepoLensError) else ErrorCode.UNKNOWN_ERROR
    error_type, refund = _TAXONOMY[code]
    return ErrorClassification(code=code, type=error_type, refund=refund)


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

_REFUNDED = "Your scan quota has been refunded automatically"

_USER_MESSAGES: dict[ErrorCode, dict] = {
    ErrorCode.RATE_LIMIT_EXCEEDED: {
        "title": "Rate Limit Reached",
        "message": (
            "You've reached your scan quota. Please wait for your quota to reset "
            "or sign in for higher limits."
        ),
        "actions": [
            "Wait for your quota to reset",
            "Sign in to get higher limits",
        ],
    },
    ErrorCode.REPO_TOO_LARGE: {
        "title": "Repository Too Large",
        "message": (
            "The repository took too long to download. This usually happens with "
            "very large repositories."
        ),
        "actions": [
            _REFUNDED,
            "Try again - sometimes network conditions improve",
            "Contact support if you need to analyze this specific repository",
        ],
    },
    ErrorCode.REPO_NOT_ACCESSIBLE: {
        "title": "Repository Not Accessible",
        "message": (
            "We couldn't access this repository. It may be private, deleted, or "
            "the URL might be incorrect."
        ),
        "actions": [
            "Make sure the repository is public (private repositories are not supported)",
            "Verify the repository URL is correct",
            "Check if the repository still exists",
        ],
    },
    ErrorCode.GEMINI_RATE_LIMIT: {
        "title": "Analysis Service Busy",
        "message": (
            "Our AI analysis service is currently experiencing high demand and "
            "has reached its capacity."
        ),
        "actions": [
            _REFUNDED,
            "Please try again in a few minutes",
        ],
    },
    ErrorCode.MALICIOUS_CONTENT: {
        "title": "Security Alert",
        "message": (
            "This repository contains content that appears to be attempting to "
            "manipulate our analysis system, so it cannot be analyzed."
        ),
        "actions": [
            "If you believe this is an error, please contact support",
            "Remove prompts or instructions that could interfere with analysis",
        ],
    },
    ErrorCode.UNKNOWN_ERROR: {
        "title": "Analysis Failed",
        "message": "We encountered an unexpected error while analyzing your repository.",
        "actions": [
            _REFUNDED,
            "Please try submitting your repository again",
            "If the problem persists, contact support",
        ],
    },
}


def user_facing_error(code: ErrorCode | str | None) -> dict:
    """Return ``{title, message, actions}`` for *code*; unknown codes get the generic entry."""
    try:
        key = ErrorCode(code) if code is not None else ErrorCode.UNKNOWN_ERROR
    except ValueError:
        key = ErrorCode.UNKNOWN_ERROR
    entry = _USER_MESSAGES[key]
    return {"title": entry["title"], "message": entry["message"], "actions": list(entry["actions"])}
