import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    repository = db.ImpactRepository.from_path(str(db_path), max_connections=4)
    repository.init()
    db.reset_repository(repository)
    yield repository
    db.reset_repository(None)
    repository.pool.close_all()


@pytest.fixture
def impact_world(temp_db):
    """Two classrooms, three tests and three assignments with known outcomes.

    * "Fraction Sprint" (standards A, B): treated t1, t2 grow 5285 -> 5340,
      control c1, c2 grow 5465 -> 5470, so the DiD impact is +50. s1 (started)
      and n1 (not started) are assigned but excluded from both groups.
    * "Unscored Practice" has no post-test and cannot be measured.
    * "Multiplication Facts" (standard C): c1 completed and dropped 10 points
      while everyone else in roster 1 stayed flat, so the impact is -10.

    Roster 2 holds c3 who never shares a classroom with a treated student.
    """
    repo = temp_db
    group_id = repo.add_test_group("2025-26 Grade 3 Math")
    boy = repo.add_test(group_id, 1, "BOY", "2025-09-15")
    moy = repo.add_test(group_id, 2, "MOY", "2026-01-15")
    repo.add_test(group_id, 3, "EOY", "2026-05-15")

    rc_id = repo.add_reporting_category("Number and Operations")
    std_a = repo.add_standard(rc_id, "3.NF.A.1", "Understand a fraction 1/b")
    std_b = repo.add_standard(rc_id, "3.NF.A.2", "Fractions on a number line")
    std_c = repo.add_standard(rc_id, "3.OA.A.1", "Interpret products of whole numbers")

    roster_1 = repo.add_roster("Mrs. Johnson - 3rd Grade Math")
    roster_2 = repo.add_roster("Mr. Smith - 3rd Grade Math")

    students = {}
    for name in ("t1", "t2", "s1", "n1", "c1", "c2"):
        students[name] = repo.add_student(roster_1, name, external_id=f"ext-{name}")
    students["c3"] = repo.add_student(roster_2, "c3", external_id="ext-c3")

    pre_post = {
        # name: ((pre A, pre B), (post A, post B))
        "t1": ((5280, 5290), (5330, 5340)),
        "t2": ((5270, 5300), (5340, 5350)),
        "s1": ((5000, 5000), (5600, 5600)),
        "n1": ((5000, 5000), (5600, 5600)),
        "c1": ((5460, 5470), (5466, 5470)),
        "c2": ((5465, 5465), (5470, 5474)),
        "c3": ((5000, 5000), (5900, 5900)),
    }
    for name, ((pre_a, pre_b), (post_a, post_b)) in pre_post.items():
        post_c = 5390 if name == "c1" else 5400
        repo.add_score(students[name], boy, {std_a: pre_a, std_b: pre_b, std_c: 5400})
        repo.add_score(students[name], moy, {std_a: post_a, std_b: post_b, std_c: post_c})

    fractions = repo.add_assignment(
        "Fraction Sprint",
        "Zearn",
        group_id,
        boy,
        moy,
        rc_id=rc_id,
        standard_ids=[std_a, std_b],
        student_ids=[students["t1"], students["t2"], students["s1"], students["n1"]],
    )
    unscored = repo.add_assignment(
        "Unscored Practice",
        "IXL",
        group_id,
        boy,
        None,
        standard_ids=[std_a],
        student_ids=[students["t1"]],
    )
    multiplication = repo.add_assignment(
        "Multiplication Facts",
        "Khan Academy",
        group_id,
        boy,
        moy,
        rc_id=rc_id,
        standard_ids=[std_c],
        student_ids=[students["c1"]],
    )

    repo.update_assignment_statuses(
        fractions,
        [
            {"student_id": students["t1"], "status": "completed"},
            {"student_id": students["t2"], "status": "completed"},
            {"student_id": students["s1"], "status": "started"},
        ],
    )
    repo.update_assignment_statuses(unscored, [{"student_id": students["t1"], "status": "completed"}])
    repo.update_assignment_statuses(multiplication, [{"student_id": students["c1"], "status": "completed"}])

    return {
        "repo": repo,
        "group_id": group_id,
        "tests": {"boy": boy, "moy": moy},
        "standards": {"A": std_a, "B": std_b, "C": std_c},
        "rosters": {"r1": roster_1, "r2": roster_2},
        "students": students,
        "assignments": {
            "fractions": fractions,
            "unscored": unscored,
            "multiplication": multiplication,
        },
    }
