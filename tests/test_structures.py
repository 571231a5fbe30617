from decimal import Decimal

import pytest

from assessment_cli.errors import ValidationError
from assessment_cli.models import ScoreStructure
from assessment_cli.scoring.structures import (
    bulk_save_structures,
    delete_structure,
    list_structures,
    save_structure,
    set_structure_active,
)


def test_saving_same_triple_updates_in_place(db, component):
    first = save_structure(db, component.id, 15, class_id="JSS1", description="first")
    second = save_structure(db, component.id, 18, class_id="JSS1")
    assert first.id == second.id
    assert second.max_score == Decimal("18")
    assert db.query(ScoreStructure).count() == 1


def test_blank_ids_mean_any(db, component):
    structure = save_structure(db, component.id, 12, class_id="  ", term_id="")
    assert structure.class_id is None
    assert structure.term_id is None


def test_max_score_must_be_positive(db, component):
    with pytest.raises(ValidationError):
        save_structure(db, component.id, 0, class_id="JSS1")
    with pytest.raises(ValidationError):
        save_structure(db, component.id, "ten", class_id="JSS1")


def test_unknown_component(db):
    with pytest.raises(ValidationError):
        save_structure(db, "missing", 10)


def test_reactivating_clashing_structure_is_rejected(db, component):
    first = save_structure(db, component.id, 15, class_id="JSS1")
    set_structure_active(db, first.id, False)
    # the inactive row is preferred for the triple, so add the clash directly
    db.add(
        ScoreStructure(
            assessment_component_id=component.id,
            class_id="JSS1",
            max_score=Decimal("17"),
            is_active=True,
        )
    )
    db.commit()
    with pytest.raises(ValidationError):
        set_structure_active(db, first.id, True)


def test_bulk_save_is_all_or_nothing(db, component):
    with pytest.raises(ValidationError) as exc:
        bulk_save_structures(
            db,
            component.id,
            [
                {"class_id": "JSS1", "max_score": 15},
                {"class_id": "JSS2", "max_score": -1},
            ],
        )
    assert "Entry 2" in str(exc.value)
    assert db.query(ScoreStructure).count() == 0


def test_bulk_save_rejects_repeated_triples(db, component):
    with pytest.raises(ValidationError):
        bulk_save_structures(
            db,
            component.id,
            [
                {"class_id": "JSS1", "term_id": "T1", "max_score": 15},
                {"class_id": "JSS1", "term_id": "T1", "max_score": 16},
            ],
        )


def test_bulk_save(db, component):
    saved = bulk_save_structures(
        db,
        component.id,
        [
            {"class_id": "JSS1", "max_score": 15},
            {"class_id": "JSS1", "term_id": "T1", "max_score": 20},
            {"term_id": "T3", "max_score": 25, "description": "Third term"},
        ],
    )
    assert len(saved) == 3
    assert len(list_structures(db, component.id)) == 3


def test_delete_structure(db, component):
    structure = save_structure(db, component.id, 15, class_id="JSS1")
    delete_structure(db, structure.id)
    assert list_structures(db, component.id) == []
    with pytest.raises(ValidationError):
        delete_structure(db, structure.id)
