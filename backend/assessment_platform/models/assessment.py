from datetime import date, datetime

from sqlalchemy import String, DateTime, Date, Integer, Float, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from assessment_platform.database import Base, JSONType, generate_id, utcnow


class Assessment(Base):
    __tablename__ = "assessments"

    assessment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.tenant_id"), index=True)
    template_id: Mapped[str] = mapped_column(ForeignKey("assessment_templates.template_id"), index=True)
    assessment_name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0)
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Ordered snapshot of the template's dimensions with weight / score / max_score
    dimensions: Mapped[list] = mapped_column(JSONType, default=list)
    dimension_scores: Mapped[list] = mapped_column(JSONType, default=list)
    assigned_to: Mapped[list] = mapped_column(JSONType, default=list)
    reviewers: Mapped[list] = mapped_column(JSONType, default=list)
    # "<state>_at" / "<state>_by" stamps written on each workflow transition
    state_stamps: Mapped[dict] = mapped_column(JSONType, default=dict)
    # Follow-ups generated on publish for dimensions below the score threshold
    action_items: Mapped[list] = mapped_column(JSONType, default=list)
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (UniqueConstraint("assessment_id", "question_id", name="uq_response_assessment_question"),)

    response_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    assessment_id: Mapped[str] = mapped_column(ForeignKey("assessments.assessment_id"), index=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.question_id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36))
    response_text: Mapped[str | None] = mapped_column(String(5000), nullable=True)
    response_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft")  # draft | submitted | approved | rejected
    reviewer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewer_comments: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
