from decimal import Decimal

import openpyxl
import pytest
from click.testing import CliRunner

from assessment_cli import main
from assessment_cli.models import (
    AssessmentComponent,
    CbtAssessmentLink,
    CbtQuiz,
    CbtQuizAttempt,
    ScoreImportRow,
    ScoreStructure,
    Student,
    StudentAssessmentScore,
    new_id,
)
from tests.conftest import SESSION, TERM


@pytest.fixture
def run(engine, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main, "configure_from_env", lambda: None)
    monkeypatch.setattr(main, "get_engine", lambda use_local=True: engine)
    runner = CliRunner()

    def invoke(*args, school_id=None):
        prefix = ["--school", school_id] if school_id else []
        return runner.invoke(main.cli, prefix + list(args), catch_exceptions=False)

    return invoke


@pytest.fixture
def quiz(db, school):
    quiz = CbtQuiz(id="quiz-1", school_id=school.id, title="Maths CBT", status="published")
    db.add(quiz)
    for index, (first, score, class_id) in enumerate(
        [("Ada", 8, "JSS1"), ("Bola", 6, "JSS1"), ("Chidi", None, "JSS1")], start=1
    ):
        student = Student(
            id=f"s{index}",
            school_id=school.id,
            first_name=first,
            last_name="Test",
            admission_no=f"ADM{index}",
            class_id=class_id,
        )
        db.add(student)
        db.add(
            CbtQuizAttempt(
                id=f"att{index}",
                quiz_id=quiz.id,
                student_id=student.id,
                class_id=class_id,
                score=None if score is None else Decimal(score),
                max_score=Decimal("10"),
                status="submitted",
                submitted_at=1000 + index,
            )
        )
    db.add(
        CbtQuizAttempt(
            id="att-open",
            quiz_id=quiz.id,
            student_id="s9",
            class_id="JSS1",
            status="in_progress",
        )
    )
    db.commit()
    return quiz


def only(db, model):
    rows = db.query(model).all()
    assert len(rows) == 1
    return rows[0]


def test_school_context(run, db, school):
    result = run("school", "show", school_id=school.id)
    assert SESSION in result.output

    result = run("school", "set-current", "--session", "2026-2027", "--term", "T2", school_id=school.id)
    assert "2026-2027/T2" in result.output
    db.refresh(school)
    assert school.current_term_id == "T2"


def test_commands_needing_school_fail_without_one(run, monkeypatch):
    monkeypatch.delenv("SCHOOL_ID", raising=False)
    result = run("component", "list")
    assert result.exit_code != 0
    assert "--school" in result.output


def test_structure_commands(run, db, school):
    run("component", "add", "CA1", "--max-score", "10", "--weight", "20", school_id=school.id)
    component = only(db, AssessmentComponent)
    assert component.max_score == Decimal("10")

    run("structure", "set", component.id, "15", "--class", "JSS1")
    result = run("structure", "set", component.id, "20", "--class", "JSS1", "--term", "T1")
    assert "Saved structure" in result.output

    result = run("structure", "resolve", component.id, "--class", "JSS1", "--term", "T1")
    assert "20" in result.output
    assert "class_term" in result.output

    result = run("structure", "resolve", component.id, "--class", "SSS1", "--term", "T1")
    assert "from default" in result.output

    result = run("structure", "applicable", component.id, "--class", "JSS1", "--term", "T1")
    assert result.output.index("class_term") < result.output.index("class ")

    result = run("structure", "set", component.id, "0", "--class", "JSS2")
    assert "greater than zero" in result.output


def test_import_review_and_sync(run, db, school, component, quiz):
    result = run(
        "link", "create", component.id, quiz.id,
        "--session", SESSION, "--term", TERM, "--mapping", "percentage",
        school_id=school.id,
    )
    assert "Linked exam" in result.output
    link = only(db, CbtAssessmentLink)

    result = run("scores", "import", link.id)
    assert "Imported 3 scores" in result.output
    assert "1 scores need attention" in result.output

    result = run("scores", "import", link.id)
    assert "Imported 0 scores" in result.output
    assert "Skipped 3 attempts already imported" in result.output

    result = run("scores", "pending", link.id)
    assert "NEEDS ATTENTION" in result.output
    assert "Chidi Test (ADM3)" in result.output

    result = run("link", "list", component.id, school_id=school.id)
    assert "pending=3" in result.output

    result = run("scores", "approve", "--link", link.id, "--all")
    assert "Approved 2 scores" in result.output

    result = run("scores", "sync", link.id)
    assert "Synced 2 scores" in result.output

    scores = {
        s.student_id: s.score
        for s in db.query(StudentAssessmentScore).all()
    }
    assert scores == {"s1": Decimal("8.00"), "s2": Decimal("6.00")}

    [attention] = db.query(ScoreImportRow).filter(ScoreImportRow.status == "pending").all()
    result = run("scores", "reject", attention.id, "--reason", "Absent")
    assert "Rejected 1 scores" in result.output

    result = run("scores", "history", link.id, "--status", "rejected")
    assert "Absent" in result.output


def test_strict_sync_fails_on_unsynced_rows(run, db, school, component, quiz):
    attempt = db.get(CbtQuizAttempt, "att1")
    attempt.class_id = None
    db.commit()
    run(
        "link", "create", component.id, quiz.id, "--session", SESSION, "--term", TERM,
        school_id=school.id,
    )
    link = only(db, CbtAssessmentLink)
    run("scores", "import", link.id)
    run("scores", "approve", "--link", link.id, "--all")

    result = run("scores", "sync", link.id, "--strict")

    assert result.exit_code == 1
    assert "No class recorded" in result.output
    assert db.query(StudentAssessmentScore).count() == 1


def test_stale_link_is_reported(run, db, school, component, quiz):
    result = run(
        "link", "create", component.id, quiz.id, "--session", SESSION, "--term", "T3",
        school_id=school.id,
    )
    assert "current session/term" in result.output
    assert db.query(CbtAssessmentLink).count() == 0


def test_link_delete_keeps_synced_scores(run, db, school, component, quiz):
    run(
        "link", "create", component.id, quiz.id, "--session", SESSION, "--term", TERM,
        school_id=school.id,
    )
    link = only(db, CbtAssessmentLink)
    run("scores", "import", link.id)
    run("scores", "approve", "--link", link.id, "--all")
    run("scores", "sync", link.id)

    result = run("link", "delete", link.id, "--yes", school_id=school.id)

    assert "Deleted link" in result.output
    assert db.query(ScoreImportRow).count() == 0
    assert db.query(StudentAssessmentScore).count() == 2


def test_export_import_rows(run, db, school, component, quiz, tmp_path):
    run(
        "link", "create", component.id, quiz.id, "--session", SESSION, "--term", TERM,
        school_id=school.id,
    )
    link = only(db, CbtAssessmentLink)
    run("scores", "import", link.id)

    result = run("scores", "export", link.id)
    assert "Successfully exported 3 scores" in result.output

    [path] = list((tmp_path / "exports").glob("cbt_scores_*.xlsx"))
    sheet = openpyxl.load_workbook(path).active
    assert sheet.cell(row=1, column=1).value == "Row ID"
    students = sorted(sheet.cell(row=r, column=2).value for r in range(2, 5))
    assert students == ["Ada Test (ADM1)", "Bola Test (ADM2)", "Chidi Test (ADM3)"]


def test_structure_upload(run, db, component, tmp_path):
    path = tmp_path / "structures.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["Class", "Term", "Max Score", "Description", "Active"])
    ws.append(["JSS1", None, 15, "Junior", "yes"])
    ws.append(["JSS1", "T1", 20, None, None])
    ws.append(["JSS2", None, "abc", None, None])
    ws.append([None, "T3", 30, None, "no"])
    wb.save(path)

    result = run("structure", "upload", component.id, str(path))

    assert "Successfully saved 3 structures" in result.output
    assert "Encountered 1 errors" in result.output
    sheet = openpyxl.load_workbook(path).active
    statuses = [sheet.cell(row=r, column=6).value for r in range(2, 6)]
    assert statuses[0] == "done" and statuses[1] == "done" and statuses[3] == "done"
    assert "max_score" in statuses[2]

    inactive = db.query(ScoreStructure).filter(ScoreStructure.is_active.is_(False)).all()
    assert [(s.class_id, s.term_id) for s in inactive] == [(None, "T3")]

    result = run("structure", "upload", component.id, str(path))
    assert "Skipped 3 rows" in result.output


def test_generated_ids_are_never_read_as_options(run, db, school):
    assert not any(new_id().startswith("-") for _ in range(500))
    assert all(new_id().isalnum() for _ in range(500))

    run("component", "add", "CA1", "--max-score", "10", school_id=school.id)
    component = only(db, AssessmentComponent)
    result = run("structure", "resolve", component.id, "--class", "JSS1", "--term", "T1")
    assert result.exit_code == 0
    assert "from default" in result.output
