"""
Pydantic schemas for problems and the values returned to callers
"""
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Declared column types are embedded verbatim in CREATE TABLE, so only plain
# type spellings are accepted: "int", "varchar(50)", "numeric(10, 2)", "text[]"
_DATA_TYPE_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+(\s*,\s*\d+)?\s*\))?(\[\])*$')


class ExpectedOutputKind(str, Enum):
    TABLE = "table"
    SINGLE_VALUE = "single_value"
    COLUMN = "column"
    ROW = "row"
    COUNT = "count"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in {member.value for member in cls}


# Base model for camelCase aliasing
class CamelCaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


class ColumnDefinition(CamelCaseModel):
    column_name: str = Field(min_length=1, max_length=63)
    data_type: str

    @field_validator("data_type")
    @classmethod
    def check_data_type(cls, value: str) -> str:
        value = value.strip()
        if not _DATA_TYPE_PATTERN.match(value):
            raise ValueError(f"Unsupported column type declaration: {value!r}")
        return value


class SampleTable(CamelCaseModel):
    table_name: str = Field(min_length=1, max_length=63)
    columns: List[ColumnDefinition]
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class ExpectedOutput(CamelCaseModel):
    """Shape contract plus value the submission is graded against"""
    # Stored documents use "type"; kind is kept as plain text so that an
    # unknown kind reaches the comparator and fails there with a reason
    kind: str = Field(alias="type")
    value: Any = None


class Problem(CamelCaseModel):
    """Immutable once published"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True
    )

    id: str
    title: str = ""
    prompt: str
    sample_tables: List[SampleTable] = Field(default_factory=list)
    expected_output: ExpectedOutput


class SandboxInfo(CamelCaseModel):
    schema_name: str
    created: bool


class GradingOutcome(CamelCaseModel):
    passed: bool
    execution_time_ms: int
    row_count: int
    reason: Optional[str] = None
