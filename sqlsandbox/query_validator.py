"""
SQL Query Admission Control
===========================
Static allow/deny filter applied to submitted SQL before it reaches the store:
- Empty submissions are rejected
- Exactly one statement is permitted
- The statement must open with a read-only keyword
- No data/structure-mutating or session-altering keyword may appear anywhere

This is a conservative lexical filter, not a parser. A column literally named
`update` is rejected too.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import QueryValidationError

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    """Why a submission was refused"""
    EMPTY_QUERY = "EMPTY_QUERY"
    MULTIPLE_STATEMENTS = "MULTIPLE_STATEMENTS"
    FORBIDDEN_KEYWORD = "FORBIDDEN_KEYWORD"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    reason: Optional[RejectReason] = None
    message: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def reject(cls, reason: RejectReason, message: str, details: Optional[str] = None) -> "ValidationResult":
        return cls(is_valid=False, reason=reason, message=message, details=details)

    def raise_for_rejection(self) -> None:
        if not self.is_valid:
            raise QueryValidationError(self.reason.value, self.message, self.details)


class QueryValidator:
    """Read-only single-statement SQL filter"""

    STATEMENT_TERMINATOR = ';'

    def __init__(self):
        # Allowed statement openers (read-only)
        self.allowed_statements = {
            'SELECT',
            'WITH'
        }

        # Blocked anywhere in the query as a standalone word
        self.blocked_keywords = (
            # DML that modifies data
            'INSERT',
            'UPDATE',
            'DELETE',
            'MERGE',

            # DDL that modifies structure
            'CREATE',
            'DROP',
            'ALTER',
            'TRUNCATE',

            # Bulk load and procedure invocation
            'COPY',
            'CALL',
            'DO',

            # Prepared-statement management
            'EXECUTE',
            'PREPARE',
            'DEALLOCATE',

            # Transaction and session control
            'BEGIN',
            'COMMIT',
            'ROLLBACK',
            'SAVEPOINT',
            'SET',
            'RESET',
            'DISCARD',
            'LOCK',
            'LISTEN',
            'NOTIFY',
            'VACUUM',

            # Privileges
            'GRANT',
            'REVOKE',
        )

        self._blocked_patterns = [
            (keyword, re.compile(rf'\b{keyword}\b', re.IGNORECASE))
            for keyword in self.blocked_keywords
        ]
        self._leading_word = re.compile(r'[A-Za-z_]+')

    def validate(self, query: Optional[str]) -> ValidationResult:
        """Accept or reject `query`; never touches the store"""
        if query is None or not query.strip():
            return ValidationResult.reject(RejectReason.EMPTY_QUERY, "Query cannot be empty")

        terminators = query.count(self.STATEMENT_TERMINATOR)
        trailing = query.split(self.STATEMENT_TERMINATOR, 1)[1] if terminators else ""
        if terminators > 1 or trailing.strip():
            return ValidationResult.reject(
                RejectReason.MULTIPLE_STATEMENTS,
                "Multiple SQL statements are not allowed",
                "Only single SELECT or WITH statements are permitted"
            )

        first_token = query.split()[0]
        match = self._leading_word.match(first_token)
        first_keyword = match.group(0).upper() if match else first_token.upper()
        if first_keyword not in self.allowed_statements:
            return ValidationResult.reject(
                RejectReason.FORBIDDEN_KEYWORD,
                f"SQL keyword '{first_keyword}' is not allowed",
                f"Only {', '.join(sorted(self.allowed_statements))} statements are permitted"
            )

        for keyword, pattern in self._blocked_patterns:
            if pattern.search(query):
                return ValidationResult.reject(
                    RejectReason.FORBIDDEN_KEYWORD,
                    f"SQL keyword '{keyword}' is not allowed",
                    "This operation could modify data or database structure"
                )

        return ValidationResult.accept()

    def check(self, query: Optional[str]) -> None:
        """Raise QueryValidationError when `query` is rejected"""
        result = self.validate(query)
        if not result.is_valid:
            logger.info(f"Rejected query ({result.reason.value}): {result.message}")
        result.raise_for_rejection()


# Global validator instance
query_validator = QueryValidator()
