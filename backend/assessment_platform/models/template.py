from sqlalchemy import String, Integer, Float, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment_platform.database import Base, JSONType, generate_id


class AssessmentTemplate(Base):
    __tablename__ = "assessment_templates"

    template_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    template_key: Mapped[str] = mapped_column(String(50), unique=True, index=True)  # e.g. "iso27001"
    template_name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    framework_type: Mapped[str] = mapped_column(String(50), default="custom")
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    estimated_duration_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    dimensions: Mapped[list["TemplateDimension"]] = relationship(
        back_populates="template", order_by="TemplateDimension.sort_order",
        cascade="all, delete-orphan",
    )


class TemplateDimension(Base):
    __tablename__ = "template_dimensions"

    dimension_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    template_id: Mapped[str] = mapped_column(ForeignKey("assessment_templates.template_id"), index=True)
    dimension_key: Mapped[str] = mapped_column(String(50))
    dimension_name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    max_score: Mapped[float] = mapped_column(Float, default=5.0)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    template: Mapped["AssessmentTemplate"] = relationship(back_populates="dimensions")


class TemplateQuestion(Base):
    __tablename__ = "questions"

    question_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    dimension_id: Mapped[str] = mapped_column(ForeignKey("template_dimensions.dimension_id"), index=True)
    question_text: Mapped[str] = mapped_column(String(2000))
    question_type: Mapped[str] = mapped_column(String(30))  # text | multiple_choice | scale | matrix
    help_text: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    # Type-specific settings: options, scale_min/max, matrix_rows, ...
    type_config: Mapped[dict] = mapped_column(JSONType, default=dict)
    validation_rules: Mapped[dict] = mapped_column(JSONType, default=dict)
    scoring_rubric: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
