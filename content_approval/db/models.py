"""
Database models for the content approval workflow.
"""

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, JSON, CheckConstraint, ForeignKey, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ContentApproval(Base):
    """
    One row per approval record.
    Status, priority and rejection reason are closed enumerations enforced by
    check constraints so no unknown string can be persisted.
    """
    __tablename__ = "content_approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    search_query = Column(String(255), nullable=False, index=True)
    content_payload = Column(JSON, nullable=False, default=dict)
    quality_score = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="pending_review")
    priority = Column(String(20), nullable=False, default="normal")
    created_at = Column(DateTime(timezone=True), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    rejection_reason = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    published_reference = Column(String(255), nullable=True)
    auto_approval_reason = Column(Text, nullable=True)

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_review', 'under_review', 'approved', 'auto_approved', 'rejected')",
            name="valid_approval_status"
        ),
        CheckConstraint(
            "priority IN ('high', 'normal', 'low')",
            name="valid_approval_priority"
        ),
        CheckConstraint(
            "rejection_reason IS NULL OR rejection_reason IN "
            "('quality', 'relevance', 'accuracy', 'inappropriate', 'other')",
            name="valid_rejection_reason"
        ),
        CheckConstraint(
            "quality_score >= 0 AND quality_score <= 1",
            name="quality_score_range"
        ),
        Index('idx_content_approvals_queue', 'status', 'priority', 'created_at'),
        Index('idx_content_approvals_quality', 'quality_score'),
    )


class ContentApprovalHistory(Base):
    """
    Append-only action log: one row per routing decision at ingestion and per
    reviewer event, written in the same transaction as the record change.
    """
    __tablename__ = "content_approval_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(Integer, ForeignKey("content_approvals.id", ondelete="CASCADE"), nullable=False)
    event = Column(String(20), nullable=False)
    actor = Column(String(255), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "event IN ('routed', 'begin_review', 'approve', 'reject')",
            name="valid_history_event"
        ),
        Index('idx_content_approval_history_record', 'record_id', 'created_at'),
    )
