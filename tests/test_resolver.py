from decimal import Decimal

import pytest

from assessment_cli.errors import ConfigurationError, ValidationError
from assessment_cli.models import AssessmentComponent
from assessment_cli.scoring.resolver import ScoreStructureResolver
from assessment_cli.scoring.structures import save_structure, set_structure_active


@pytest.fixture
def layered(db, component):
    save_structure(db, component.id, 15, class_id="JSS1")
    save_structure(db, component.id, 20, class_id="JSS1", term_id="T1")
    return component


def test_most_specific_structure_wins(db, layered):
    resolver = ScoreStructureResolver(db)
    assert resolver.resolve(layered.id, "JSS1", "T1") == Decimal("20")
    assert resolver.resolve(layered.id, "JSS1", "T2") == Decimal("15")
    assert resolver.resolve(layered.id, "SSS1", "T1") == Decimal("10")


def test_resolution_reports_level(db, layered):
    resolver = ScoreStructureResolver(db)
    resolution = resolver.resolve_with_level(layered.id, "JSS1", "T1")
    assert resolution.level == "class_term"
    assert resolution.from_structure

    fallback = resolver.resolve_with_level(layered.id, "SSS1", "T1")
    assert fallback.level == "default"
    assert not fallback.from_structure


def test_term_structure_beats_component_wide_structure(db, component):
    save_structure(db, component.id, 12)
    save_structure(db, component.id, 30, term_id="T3")
    resolver = ScoreStructureResolver(db)
    assert resolver.resolve(component.id, "JSS2", "T3") == Decimal("30")
    assert resolver.resolve(component.id, "JSS2", "T1") == Decimal("12")


def test_term_structure_does_not_match_without_term(db, component):
    save_structure(db, component.id, 30, term_id="T3")
    assert ScoreStructureResolver(db).resolve(component.id, "JSS2", None) == Decimal("10")


def test_inactive_structures_are_ignored(db, layered):
    resolver = ScoreStructureResolver(db)
    top = resolver.resolve_with_level(layered.id, "JSS1", "T1")
    set_structure_active(db, top.structure_id, False)
    assert resolver.resolve(layered.id, "JSS1", "T1") == Decimal("15")


def test_applicable_lists_matches_most_specific_first(db, layered):
    snapshot = ScoreStructureResolver(db).snapshot(layered.id)
    levels = [level for level, _ in snapshot.applicable("JSS1", "T1")]
    assert levels == ["class_term", "class"]
    assert snapshot.applicable("SSS1", "T1") == []


def test_no_structure_and_no_default_is_configuration_error(db, school):
    component = AssessmentComponent(school_id=school.id, name="Project")
    db.add(component)
    db.commit()
    with pytest.raises(ConfigurationError):
        ScoreStructureResolver(db).resolve(component.id, "JSS1", "T1")


def test_unknown_component(db):
    with pytest.raises(ValidationError):
        ScoreStructureResolver(db).resolve("missing", "JSS1", "T1")
