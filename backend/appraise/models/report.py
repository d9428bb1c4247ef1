"""Report models: the persisted form of an ingested runner report."""

from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, BigInteger
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from appraise.db.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from appraise.models.test_run import TestRun


class StepStatus(str, Enum):
    """Status of a step or hook."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"
    UNDEFINED = "UNDEFINED"


class StepKeyword(str, Enum):
    """Gherkin keyword of a step, or the kind of hook."""

    GIVEN = "GIVEN"
    WHEN = "WHEN"
    THEN = "THEN"
    AND = "AND"
    BUT = "BUT"
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class Report(Base, UUIDMixin, TimestampMixin):
    """Report ingested for a test run."""

    __tablename__ = "reports"

    test_run_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("test_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    report_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    test_run: Mapped["TestRun"] = relationship("TestRun", back_populates="reports")
    features: Mapped[list["ReportFeature"]] = relationship(
        "ReportFeature",
        back_populates="report",
        cascade="all, delete-orphan",
    )


class ReportFeature(Base, UUIDMixin, TimestampMixin):
    """A feature file as executed."""

    __tablename__ = "report_features"

    report_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    uri: Mapped[str | None] = mapped_column(String(1000))
    line: Mapped[int | None] = mapped_column(Integer)
    keyword: Mapped[str | None] = mapped_column(String(50))
    tags: Mapped[list | None] = mapped_column(JSON)

    report: Mapped["Report"] = relationship("Report", back_populates="features")
    scenarios: Mapped[list["ReportScenario"]] = relationship(
        "ReportScenario",
        back_populates="feature",
        cascade="all, delete-orphan",
    )


class ReportScenario(Base, UUIDMixin, TimestampMixin):
    """A scenario as executed."""

    __tablename__ = "report_scenarios"

    report_feature_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("report_features.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    line: Mapped[int | None] = mapped_column(Integer)
    keyword: Mapped[str | None] = mapped_column(String(50))
    type: Mapped[str | None] = mapped_column(String(50))
    cucumber_id: Mapped[str | None] = mapped_column(String(1000))
    tags: Mapped[list | None] = mapped_column(JSON)

    feature: Mapped["ReportFeature"] = relationship("ReportFeature", back_populates="scenarios")
    steps: Mapped[list["ReportStep"]] = relationship(
        "ReportStep",
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="ReportStep.order",
    )
    hooks: Mapped[list["ReportHook"]] = relationship(
        "ReportHook",
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="ReportHook.order",
    )


class ReportStep(Base, UUIDMixin, TimestampMixin):
    """A step of a scenario."""

    __tablename__ = "report_steps"

    report_scenario_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("report_scenarios.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword: Mapped[StepKeyword] = mapped_column(String(20), nullable=False)
    line: Mapped[int | None] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(1000), default="")
    match_location: Mapped[str | None] = mapped_column(String(1000))
    status: Mapped[StepStatus] = mapped_column(String(20), nullable=False)
    duration: Mapped[int] = mapped_column(BigInteger, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    error_trace: Mapped[str | None] = mapped_column(Text)
    hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    scenario: Mapped["ReportScenario"] = relationship("ReportScenario", back_populates="steps")


class ReportHook(Base, UUIDMixin, TimestampMixin):
    """A Before/After hook of a scenario."""

    __tablename__ = "report_hooks"

    report_scenario_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("report_scenarios.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword: Mapped[StepKeyword] = mapped_column(String(20), nullable=False)
    status: Mapped[StepStatus] = mapped_column(String(20), nullable=False)
    duration: Mapped[int] = mapped_column(BigInteger, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    error_trace: Mapped[str | None] = mapped_column(Text)
    hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    scenario: Mapped["ReportScenario"] = relationship("ReportScenario", back_populates="hooks")
