"""
Maximum score resolution for assessment components.

A component's maximum score can be overridden per class, per term or per
class and term. The most specific active structure wins; the component's own
default is the last resort.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from assessment_cli.errors import ConfigurationError, ValidationError
from assessment_cli.models import AssessmentComponent, ScoreStructure


@dataclass(frozen=True)
class StructureEntry:
    id: str
    class_id: Optional[str]
    term_id: Optional[str]
    max_score: Decimal
    description: Optional[str] = None


@dataclass(frozen=True)
class PrecedenceLevel:
    name: str
    matches: Callable[[StructureEntry, Optional[str], Optional[str]], bool]


# Highest precedence first
PRECEDENCE: Tuple[PrecedenceLevel, ...] = (
    PrecedenceLevel(
        "class_term",
        lambda s, class_id, term_id: class_id is not None
        and term_id is not None
        and s.class_id == class_id
        and s.term_id == term_id,
    ),
    PrecedenceLevel(
        "class",
        lambda s, class_id, term_id: class_id is not None
        and s.class_id == class_id
        and s.term_id is None,
    ),
    PrecedenceLevel(
        "term",
        lambda s, class_id, term_id: term_id is not None
        and s.class_id is None
        and s.term_id == term_id,
    ),
    PrecedenceLevel(
        "component",
        lambda s, class_id, term_id: s.class_id is None and s.term_id is None,
    ),
)

DEFAULT_LEVEL = "default"


@dataclass(frozen=True)
class Resolution:
    max_score: Decimal
    level: str
    structure_id: Optional[str] = None

    @property
    def from_structure(self) -> bool:
        return self.structure_id is not None


@dataclass(frozen=True)
class StructureSnapshot:
    """Active structures of one component, frozen at the moment they were read."""

    component_id: str
    component_name: str
    default_max_score: Optional[Decimal]
    structures: Tuple[StructureEntry, ...]

    def applicable(
        self, class_id: Optional[str] = None, term_id: Optional[str] = None
    ) -> List[Tuple[str, StructureEntry]]:
        """Structures that apply to the context, most specific first."""
        found = []
        for level in PRECEDENCE:
            for entry in self.structures:
                if level.matches(entry, class_id, term_id):
                    found.append((level.name, entry))
        return found

    def resolve(
        self, class_id: Optional[str] = None, term_id: Optional[str] = None
    ) -> Resolution:
        for level in PRECEDENCE:
            for entry in self.structures:
                if level.matches(entry, class_id, term_id):
                    return Resolution(entry.max_score, level.name, entry.id)

        if self.default_max_score is None:
            raise ConfigurationError(
                f"No maximum score configured for component '{self.component_name}' "
                f"(class={class_id or 'any'}, term={term_id or 'any'})"
            )
        return Resolution(Decimal(self.default_max_score), DEFAULT_LEVEL)


class ScoreStructureResolver:
    def __init__(self, db: Session):
        self.db = db

    def snapshot(self, component_id: str) -> StructureSnapshot:
        component = self.db.get(AssessmentComponent, component_id)
        if component is None:
            raise ValidationError(f"Assessment component {component_id} not found")

        rows = (
            self.db.query(ScoreStructure)
            .filter(
                ScoreStructure.assessment_component_id == component_id,
                ScoreStructure.is_active.is_(True),
            )
            .order_by(ScoreStructure.created_at, ScoreStructure.id)
            .all()
        )
        return StructureSnapshot(
            component_id=component.id,
            component_name=component.name,
            default_max_score=component.max_score,
            structures=tuple(
                StructureEntry(
                    id=row.id,
                    class_id=row.class_id,
                    term_id=row.term_id,
                    max_score=Decimal(row.max_score),
                    description=row.description,
                )
                for row in rows
            ),
        )

    def resolve_with_level(
        self,
        component_id: str,
        class_id: Optional[str] = None,
        term_id: Optional[str] = None,
    ) -> Resolution:
        return self.snapshot(component_id).resolve(class_id, term_id)

    def resolve(
        self,
        component_id: str,
        class_id: Optional[str] = None,
        term_id: Optional[str] = None,
    ) -> Decimal:
        return self.resolve_with_level(component_id, class_id, term_id).max_score
