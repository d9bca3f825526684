"""
SQLAlchemy models for the sandbox record store
"""
from sqlalchemy import Column, String, Text, Integer, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
import uuid
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ExecutionStatus(enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


class ProblemRecord(Base):
    """Published problems; written by the authoring side, read-only for the engine"""
    __tablename__ = "problems"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(200), nullable=False)
    prompt = Column(Text, nullable=False)
    sample_tables = Column(JSONType, nullable=False, default=list)  # [{tableName, columns, rows}]
    expected_output = Column(JSONType, nullable=False)  # {type, value}
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)


class SandboxNamespace(Base):
    """One physical schema per (identity, problem) pair"""
    __tablename__ = "sandbox_namespaces"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    identity_id = Column(String(255), nullable=False)
    problem_id = Column(String, nullable=False)
    schema_name = Column(String(63), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    last_used_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('identity_id', 'problem_id', name='uq_sandbox_namespaces_identity_problem'),
        UniqueConstraint('schema_name', name='uq_sandbox_namespaces_schema_name'),
        Index('idx_sandbox_namespaces_last_used_at', 'last_used_at'),
    )


class ExecutionLog(Base):
    """Every execution attempt, for analytics and cleanup"""
    __tablename__ = "execution_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    identity_id = Column(String(255), nullable=False)
    problem_id = Column(String, nullable=False)
    query = Column(Text, nullable=False)
    execution_time_ms = Column(Integer, nullable=False, default=0)
    row_count = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False)  # ExecutionStatus values
    error_message = Column(Text, nullable=True)
    schema_name = Column(String(63), nullable=True)  # None when the sandbox was never resolved
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_execution_logs_identity_problem', 'identity_id', 'problem_id'),
        Index('idx_execution_logs_created_at', 'created_at'),
    )
