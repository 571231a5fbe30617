from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_cli.errors import ValidationError
from assessment_cli.models import AssessmentComponent, ScoreStructure
from assessment_cli.scoring.converter import to_decimal
from assessment_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def clean_id(value: Optional[str]) -> Optional[str]:
    """Blank ids mean 'any', same as None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _positive_max_score(value: Any) -> Decimal:
    max_score = to_decimal(value, "max_score")
    if max_score is None or max_score <= 0:
        raise ValidationError(f"max_score must be greater than zero, got {value!r}")
    return max_score


def _get_component(db: Session, component_id: str) -> AssessmentComponent:
    component = db.get(AssessmentComponent, component_id)
    if component is None:
        raise ValidationError(f"Assessment component {component_id} not found")
    return component


def _same_triple(query, class_id: Optional[str], term_id: Optional[str]):
    query = query.filter(
        ScoreStructure.class_id.is_(None)
        if class_id is None
        else ScoreStructure.class_id == class_id
    )
    return query.filter(
        ScoreStructure.term_id.is_(None)
        if term_id is None
        else ScoreStructure.term_id == term_id
    )


def find_structure(
    db: Session, component_id: str, class_id: Optional[str], term_id: Optional[str]
) -> Optional[ScoreStructure]:
    """The structure stored for a triple, preferring the active one."""
    query = db.query(ScoreStructure).filter(
        ScoreStructure.assessment_component_id == component_id
    )
    return (
        _same_triple(query, class_id, term_id)
        .order_by(ScoreStructure.is_active.desc(), ScoreStructure.created_at.desc())
        .first()
    )


def _stage_structure(
    db: Session,
    component_id: str,
    class_id: Optional[str],
    term_id: Optional[str],
    max_score: Any,
    description: Optional[str],
    is_active: bool,
) -> ScoreStructure:
    class_id = clean_id(class_id)
    term_id = clean_id(term_id)
    value = _positive_max_score(max_score)

    structure = find_structure(db, component_id, class_id, term_id)
    if structure is None:
        structure = ScoreStructure(
            assessment_component_id=component_id,
            class_id=class_id,
            term_id=term_id,
        )
        db.add(structure)

    structure.max_score = value
    structure.description = description or None
    structure.is_active = is_active
    db.flush()
    return structure


def save_structure(
    db: Session,
    component_id: str,
    max_score: Any,
    class_id: Optional[str] = None,
    term_id: Optional[str] = None,
    description: Optional[str] = None,
    is_active: bool = True,
) -> ScoreStructure:
    """
    Create or update the structure for (component, class, term).

    A triple holds at most one structure, so saving the same triple twice
    edits the stored row instead of adding a competing one.
    """
    _get_component(db, component_id)
    try:
        structure = _stage_structure(
            db, component_id, class_id, term_id, max_score, description, is_active
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(
            "Another active structure already exists for this class and term"
        )
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Saved structure {structure.id} for component {component_id}: "
        f"class={structure.class_id} term={structure.term_id} max={structure.max_score}"
    )
    return structure


def bulk_save_structures(
    db: Session, component_id: str, entries: Iterable[Dict[str, Any]]
) -> List[ScoreStructure]:
    """Save several structures for one component; all of them or none."""
    _get_component(db, component_id)
    saved = []
    seen = set()
    try:
        for index, entry in enumerate(entries, start=1):
            triple = (clean_id(entry.get("class_id")), clean_id(entry.get("term_id")))
            if triple in seen:
                raise ValidationError(
                    f"Entry {index} repeats class={triple[0] or 'any'} term={triple[1] or 'any'}"
                )
            seen.add(triple)
            try:
                saved.append(
                    _stage_structure(
                        db,
                        component_id,
                        triple[0],
                        triple[1],
                        entry.get("max_score"),
                        entry.get("description"),
                        entry.get("is_active", True),
                    )
                )
            except ValidationError as e:
                raise ValidationError(f"Entry {index}: {e}")
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(
            "Another active structure already exists for one of the classes and terms"
        )
    except Exception:
        db.rollback()
        raise

    logger.info(f"Saved {len(saved)} structures for component {component_id}")
    return saved


def set_structure_active(
    db: Session, structure_id: str, is_active: bool
) -> ScoreStructure:
    structure = db.get(ScoreStructure, structure_id)
    if structure is None:
        raise ValidationError(f"Structure {structure_id} not found")

    if is_active and not structure.is_active:
        query = db.query(ScoreStructure).filter(
            ScoreStructure.assessment_component_id
            == structure.assessment_component_id,
            ScoreStructure.is_active.is_(True),
            ScoreStructure.id != structure.id,
        )
        if _same_triple(query, structure.class_id, structure.term_id).first():
            raise ValidationError(
                "Another active structure already exists for this class and term"
            )

    structure.is_active = is_active
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(
            "Another active structure already exists for this class and term"
        )
    return structure


def delete_structure(db: Session, structure_id: str) -> None:
    # Import rows keep the max score resolved when they were converted, so
    # nothing else refers to the structure.
    structure = db.get(ScoreStructure, structure_id)
    if structure is None:
        raise ValidationError(f"Structure {structure_id} not found")
    db.delete(structure)
    db.commit()
    logger.info(f"Deleted structure {structure_id}")


def list_structures(db: Session, component_id: str) -> List[ScoreStructure]:
    _get_component(db, component_id)
    return (
        db.query(ScoreStructure)
        .filter(ScoreStructure.assessment_component_id == component_id)
        .order_by(
            ScoreStructure.class_id.is_(None),
            ScoreStructure.class_id,
            ScoreStructure.term_id.is_(None),
            ScoreStructure.term_id,
        )
        .all()
    )
