"""
SQLAlchemy table definitions
"""
from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


class RunRecord(Base):
    """A workflow run and its full execution context"""
    __tablename__ = 'workflow_runs'

    run_id = Column(String(255), primary_key=True)
    workflow_id = Column(String(255), nullable=False)
    workflow_version = Column(String(50))
    parent_run_id = Column(String(255))
    status = Column(String(50), nullable=False)
    current_node = Column(String(255))
    wake_at = Column(Float)  # epoch seconds, UTC
    context = Column(JSON, nullable=False)
    last_error = Column(JSON)
    fork_count = Column(Integer, default=0)
    lease_owner = Column(String(255))
    lease_expires_at = Column(Float)
    created_at = Column(Float, nullable=False)
    finished_at = Column(Float)
    stored_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_workflow_runs_status_wake_at', 'status', 'wake_at'),
        Index('idx_workflow_runs_workflow_id', 'workflow_id'),
    )
