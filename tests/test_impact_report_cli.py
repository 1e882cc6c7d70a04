import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import impact_report


def test_group_report_lists_ranked_impacts(impact_world, capsys):
    exit_code = impact_report.main(["--db", os.environ["DB_PATH"], "--group", str(impact_world["group_id"])])
    captured = capsys.readouterr()

    assert exit_code == 0
    report = json.loads(captured.out)
    assert report["group_id"] == impact_world["group_id"]
    assert report["count"] == 2
    assert [impact["assignment_name"] for impact in report["impacts"]] == [
        "Fraction Sprint",
        "Multiplication Facts",
    ]
    assert report["impacts"][0]["did_impact"] == 50


def test_significant_only_filters_group_report(impact_world, capsys):
    exit_code = impact_report.main(
        ["--db", os.environ["DB_PATH"], "--group", str(impact_world["group_id"]), "--significant-only"]
    )
    report = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert [impact["assignment_name"] for impact in report["impacts"]] == ["Fraction Sprint"]


def test_single_assignment_standard_report_written_to_file(impact_world, tmp_path, capsys):
    output = tmp_path / "report.json"
    exit_code = impact_report.main(
        [
            "--db",
            os.environ["DB_PATH"],
            "--assignment",
            str(impact_world["assignments"]["fractions"]),
            "--standards",
            "--output",
            str(output),
        ]
    )
    capsys.readouterr()

    assert exit_code == 0
    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["overall_did_impact"] == 50
    assert [row["code"] for row in report["standards"]] == ["3.NF.A.1", "3.NF.A.2"]


def test_unmeasurable_assignment_exits_with_one(impact_world, capsys):
    exit_code = impact_report.main(
        ["--db", os.environ["DB_PATH"], "--assignment", str(impact_world["assignments"]["unscored"])]
    )
    captured = capsys.readouterr()

    assert exit_code == 1
    assert "has no impacted test" in captured.err
    assert captured.out == ""


def test_missing_database_exits_with_two(tmp_path, capsys):
    exit_code = impact_report.main(["--db", str(tmp_path / "missing.db"), "--group", "1"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "Database not found" in captured.err
