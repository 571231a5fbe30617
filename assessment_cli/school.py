from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from assessment_cli.errors import ValidationError
from assessment_cli.models import School


@dataclass(frozen=True)
class SchoolContext:
    school_id: str
    session_id: Optional[str]
    term_id: Optional[str]


class SchoolContextProvider(ABC):
    @abstractmethod
    def current(self) -> SchoolContext:
        """The school's current session and term."""


class SqlSchoolContext(SchoolContextProvider):
    def __init__(self, db: Session, school_id: str):
        self.db = db
        self.school_id = school_id

    def _school(self) -> School:
        school = self.db.get(School, self.school_id)
        if school is None:
            raise ValidationError(f"School {self.school_id} not found")
        return school

    def current(self) -> SchoolContext:
        school = self._school()
        return SchoolContext(
            school_id=school.id,
            session_id=school.current_session_id,
            term_id=school.current_term_id,
        )

    def set_current(self, session_id: str, term_id: str) -> SchoolContext:
        if not session_id or not term_id:
            raise ValidationError("Both a session and a term are required")
        school = self._school()
        school.current_session_id = session_id
        school.current_term_id = term_id
        self.db.commit()
        return self.current()
