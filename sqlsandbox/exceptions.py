"""
Error taxonomy for the sandbox engine.

Every failure leaving the engine is one of these classes. Each carries a
stable category tag plus a user-safe message; store-native error payloads are
translated before they get here.
"""
from typing import Any, Dict, Optional


class SandboxEngineError(Exception):
    """Base class for all classified engine failures"""

    category = "RUNTIME_ERROR"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        text = f"{self.category}: {self.message}"
        if self.details:
            text += f" - {self.details}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.category,
            "message": self.message,
            "details": self.details,
        }

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CATEGORY.get(self.category, 500)


class QueryValidationError(SandboxEngineError):
    """Submission rejected by the validator before reaching the store"""

    category = "VALIDATION_ERROR"

    def __init__(self, reason: str, message: str, details: Optional[str] = None):
        super().__init__(message, details)
        # EMPTY_QUERY, MULTIPLE_STATEMENTS or FORBIDDEN_KEYWORD
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class SandboxNotFound(SandboxEngineError):
    category = "SANDBOX_NOT_FOUND"


class QueryTimeout(SandboxEngineError):
    category = "TIMEOUT"


class QuerySyntaxError(SandboxEngineError):
    category = "SYNTAX_ERROR"


class QueryRuntimeError(SandboxEngineError):
    category = "RUNTIME_ERROR"


class QueryPermissionError(SandboxEngineError):
    category = "PERMISSION_ERROR"


class ProblemNotFound(SandboxEngineError):
    category = "NOT_FOUND"


class ProvisioningError(SandboxEngineError):
    """Schema, table or seed-row creation failed; safe to retry"""

    category = "PROVISIONING_ERROR"


class UnsupportedExpectedOutput(SandboxEngineError):
    category = "UNSUPPORTED_EXPECTED_OUTPUT"


HTTP_STATUS_BY_CATEGORY = {
    QueryValidationError.category: 400,
    QuerySyntaxError.category: 400,
    QueryRuntimeError.category: 400,
    QueryPermissionError.category: 403,
    SandboxNotFound.category: 404,
    ProblemNotFound.category: 404,
    QueryTimeout.category: 408,
    ProvisioningError.category: 500,
    UnsupportedExpectedOutput.category: 500,
}
