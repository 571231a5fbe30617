from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from nanoid import generate
from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def now_ts() -> int:
    return int(datetime.now().timestamp())


ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def new_id() -> str:
    # no "-" so ids never look like options on the command line
    return generate(ID_ALPHABET, 21)


class School(Base):
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    current_session_id: Mapped[Optional[str]] = mapped_column(String)
    current_term_id: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)

    def __repr__(self) -> str:
        return (
            f"<School id={self.id!r} name={self.name!r} "
            f"session={self.current_session_id!r} term={self.current_term_id!r}>"
        )


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    admission_no: Mapped[Optional[str]] = mapped_column(String, index=True)
    class_id: Mapped[Optional[str]] = mapped_column(String)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Student id={self.id!r} name={self.name!r} admission_no={self.admission_no!r}>"


class AssessmentComponent(Base):
    __tablename__ = "assessment_components"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)  # eg. CA1, Exam
    label: Mapped[Optional[str]] = mapped_column(String)
    max_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)

    structures: Mapped[list["ScoreStructure"]] = relationship(
        back_populates="component", cascade="all, delete-orphan"
    )
    cbt_links: Mapped[list["CbtAssessmentLink"]] = relationship(
        back_populates="component", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("school_id", "name", name="unique_school_component"),
    )

    def __repr__(self) -> str:
        return (
            f"<AssessmentComponent id={self.id!r} name={self.name!r} "
            f"max_score={self.max_score!r} weight={self.weight!r}>"
        )


class ScoreStructure(Base):
    __tablename__ = "assessment_component_structures"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    assessment_component_id: Mapped[str] = mapped_column(
        ForeignKey("assessment_components.id", ondelete="cascade"), nullable=False
    )
    class_id: Mapped[Optional[str]] = mapped_column(String)  # None applies to all classes
    term_id: Mapped[Optional[str]] = mapped_column(String)  # None applies to all terms
    max_score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(Integer, onupdate=now_ts)

    component: Mapped["AssessmentComponent"] = relationship(
        back_populates="structures"
    )

    def __repr__(self) -> str:
        return (
            f"<ScoreStructure id={self.id!r} component={self.assessment_component_id!r} "
            f"class_id={self.class_id!r} term_id={self.term_id!r} "
            f"max_score={self.max_score!r} is_active={self.is_active!r}>"
        )


# NULL class/term are wildcards, so uniqueness has to see them as values
Index(
    "unique_active_component_structure",
    ScoreStructure.assessment_component_id,
    func.coalesce(ScoreStructure.class_id, ""),
    func.coalesce(ScoreStructure.term_id, ""),
    unique=True,
    sqlite_where=ScoreStructure.is_active.is_(True),
    postgresql_where=ScoreStructure.is_active.is_(True),
)


ScoreMappingType = Literal["direct", "percentage", "scaled"]


class CbtAssessmentLink(Base):
    __tablename__ = "cbt_assessment_links"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    assessment_component_id: Mapped[str] = mapped_column(
        ForeignKey("assessment_components.id", ondelete="cascade"), nullable=False
    )
    cbt_exam_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    term_id: Mapped[str] = mapped_column(String, nullable=False)
    class_id: Mapped[Optional[str]] = mapped_column(String)
    subject_id: Mapped[Optional[str]] = mapped_column(String)
    score_mapping_type: Mapped[ScoreMappingType] = mapped_column(
        String, nullable=False, default="direct"
    )
    max_score_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    auto_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_attempt_at: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)

    component: Mapped["AssessmentComponent"] = relationship(back_populates="cbt_links")
    imports: Mapped[list["ScoreImportRow"]] = relationship(
        back_populates="link", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<CbtAssessmentLink id={self.id!r} component={self.assessment_component_id!r} "
            f"exam={self.cbt_exam_id!r} mapping={self.score_mapping_type!r} "
            f"is_active={self.is_active!r}>"
        )


Index(
    "unique_active_component_exam",
    CbtAssessmentLink.assessment_component_id,
    CbtAssessmentLink.cbt_exam_id,
    unique=True,
    sqlite_where=CbtAssessmentLink.is_active.is_(True),
    postgresql_where=CbtAssessmentLink.is_active.is_(True),
)


ImportStatus = Literal["pending", "approved", "rejected", "synced"]


class ScoreImportRow(Base):
    __tablename__ = "cbt_score_imports"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    link_id: Mapped[str] = mapped_column(
        ForeignKey("cbt_assessment_links.id", ondelete="cascade"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String, nullable=False)
    attempt_id: Mapped[str] = mapped_column(String, nullable=False)
    class_id: Mapped[Optional[str]] = mapped_column(String)
    cbt_raw_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    cbt_max_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    converted_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    target_max_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    status: Mapped[ImportStatus] = mapped_column(
        String, nullable=False, default="pending", index=True
    )
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[Optional[str]] = mapped_column(String)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String)
    rejected_at: Mapped[Optional[int]] = mapped_column(Integer)
    approved_at: Mapped[Optional[int]] = mapped_column(Integer)
    synced_at: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)

    link: Mapped["CbtAssessmentLink"] = relationship(back_populates="imports")

    __table_args__ = (
        UniqueConstraint(
            "link_id", "student_id", "attempt_id", name="unique_link_student_attempt"
        ),
    )

    @property
    def needs_attention(self) -> bool:
        return self.status == "pending" and self.converted_score is None

    def __repr__(self) -> str:
        return (
            f"<ScoreImportRow id={self.id!r} link_id={self.link_id!r} "
            f"student_id={self.student_id!r} converted={self.converted_score!r} "
            f"status={self.status!r}>"
        )


class ScoreImportAudit(Base):
    __tablename__ = "cbt_score_import_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("cbt_score_imports.id", ondelete="set null")
    )
    previous_status: Mapped[Optional[ImportStatus]] = mapped_column(String)
    new_status: Mapped[ImportStatus] = mapped_column(String, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String)
    date: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)

    def __repr__(self) -> str:
        return (
            f"<ScoreImportAudit id={self.id!r} import_id={self.import_id!r} "
            f"{self.previous_status!r}->{self.new_status!r}>"
        )


# Tables owned by the CBT subsystem. Only read here, through SqlCbtExamCatalog.

QuizStatus = Literal["draft", "published", "closed", "archived"]


class CbtQuiz(Base):
    __tablename__ = "cbt_quizzes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="cascade"), nullable=False
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    subject_id: Mapped[Optional[str]] = mapped_column(String)
    class_id: Mapped[Optional[str]] = mapped_column(String)
    status: Mapped[QuizStatus] = mapped_column(String, nullable=False, default="draft")

    attempts: Mapped[list["CbtQuizAttempt"]] = relationship(back_populates="quiz")

    def __repr__(self) -> str:
        return f"<CbtQuiz id={self.id!r} title={self.title!r} status={self.status!r}>"


AttemptStatus = Literal["in_progress", "submitted", "expired"]


class CbtQuizAttempt(Base):
    __tablename__ = "cbt_quiz_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    quiz_id: Mapped[str] = mapped_column(
        ForeignKey("cbt_quizzes.id", ondelete="cascade"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String, nullable=False)
    class_id: Mapped[Optional[str]] = mapped_column(String)
    score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    max_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2))
    status: Mapped[AttemptStatus] = mapped_column(
        String, nullable=False, default="in_progress"
    )
    submitted_at: Mapped[Optional[int]] = mapped_column(Integer)

    quiz: Mapped["CbtQuiz"] = relationship(back_populates="attempts")

    def __repr__(self) -> str:
        return (
            f"<CbtQuizAttempt id={self.id!r} quiz_id={self.quiz_id!r} "
            f"student_id={self.student_id!r} score={self.score!r}/{self.max_score!r}>"
        )


class StudentAssessmentScore(Base):
    """Gradebook of record, written by SqlGradebook."""

    __tablename__ = "student_assessment_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String, nullable=False)
    assessment_component_id: Mapped[str] = mapped_column(
        ForeignKey("assessment_components.id", ondelete="cascade"), nullable=False
    )
    class_id: Mapped[str] = mapped_column(String, nullable=False)
    term_id: Mapped[str] = mapped_column(String, nullable=False)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    subject_id: Mapped[Optional[str]] = mapped_column(String)
    score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=now_ts)
    updated_at: Mapped[int] = mapped_column(
        Integer, nullable=False, default=now_ts, onupdate=now_ts
    )

    def __repr__(self) -> str:
        return (
            f"<StudentAssessmentScore student_id={self.student_id!r} "
            f"component={self.assessment_component_id!r} score={self.score!r}>"
        )


Index(
    "unique_student_component_score",
    StudentAssessmentScore.student_id,
    StudentAssessmentScore.assessment_component_id,
    StudentAssessmentScore.class_id,
    StudentAssessmentScore.term_id,
    StudentAssessmentScore.session_id,
    func.coalesce(StudentAssessmentScore.subject_id, ""),
    unique=True,
)
