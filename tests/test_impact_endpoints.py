import asyncio
import json
from typing import Optional
from unittest.mock import patch
from urllib.parse import urlencode

import pytest

import app


async def _call_app(method: str, path: str, *, query: Optional[dict] = None):
    query_string = urlencode(query or {}, doseq=True).encode()
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": query_string,
        "headers": [(b"host", b"testserver")],
        "client": ("testclient", 12345),
        "server": ("testserver", 80),
        "state": {},
    }

    messages = []

    async def receive():
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)

    await app.app(scope, receive, send)
    status = 500
    headers = {}
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
            headers = {key.decode("latin-1"): value.decode("latin-1") for key, value in message.get("headers", [])}
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, headers, data


def _get(path: str, query: Optional[dict] = None):
    return asyncio.run(_call_app("GET", path, query=query))


def test_assignment_impact_includes_student_points(impact_world):
    students = impact_world["students"]
    assignment_id = impact_world["assignments"]["fractions"]

    status, headers, data = _get(f"/assignments/{assignment_id}/impact")

    assert status == 200
    assert headers["cache-control"] == "private, max-age=300"
    assert data["assignment_id"] == assignment_id
    assert data["did_impact"] == 50
    assert data["standards"] == ["3.NF.A.1", "3.NF.A.2"]
    assert data["is_significant"] is True
    assert 0 <= data["p_value"] < 0.05
    assert {point["student_id"] for point in data["treated_points"]} == {students["t1"], students["t2"]}
    assert {point["student_id"] for point in data["control_points"]} == {students["c1"], students["c2"]}


def test_unmeasurable_or_unknown_assignment_is_404(impact_world):
    status, _, data = _get(f"/assignments/{impact_world['assignments']['unscored']}/impact")
    assert status == 404
    assert data["detail"] == "Assignment not found or has no impacted test"

    status, _, _ = _get("/assignments/987654/impact")
    assert status == 404

    status, _, _ = _get(f"/assignments/{impact_world['assignments']['unscored']}/standard-impact")
    assert status == 404


def test_standard_impact_endpoint(impact_world):
    assignment_id = impact_world["assignments"]["fractions"]

    status, headers, data = _get(f"/assignments/{assignment_id}/standard-impact")

    assert status == 200
    assert headers["cache-control"] == "private, max-age=300"
    assert data["overall_did_impact"] == 50
    assert data["overall"]["code"] == "Overall"
    assert [(row["code"], row["did_impact"]) for row in data["standards"]] == [("3.NF.A.1", 55), ("3.NF.A.2", 46)]


def test_summary_ranks_measurable_assignments(impact_world):
    assignments = impact_world["assignments"]

    status, headers, data = _get("/impact/summary", {"group_id": impact_world["group_id"]})

    assert status == 200
    assert headers["cache-control"] == "private, max-age=300"
    assert [impact["assignment_id"] for impact in data["impacts"]] == [
        assignments["fractions"],
        assignments["multiplication"],
    ]
    assert data["calculated_at"]
    assert all(impact["standard_impacts"] is None for impact in data["impacts"])


def test_summary_with_standard_breakdown(impact_world):
    status, _, data = _get(
        "/impact/summary", {"group_id": impact_world["group_id"], "include_standards": "true"}
    )

    assert status == 200
    fractions, multiplication = data["impacts"]
    assert [row["code"] for row in fractions["standard_impacts"]] == ["3.NF.A.1", "3.NF.A.2"]
    assert [row["did_impact"] for row in multiplication["standard_impacts"]] == [-10]


def test_summary_requires_group_id(impact_world):
    status, _, _ = _get("/impact/summary")
    assert status == 422


def test_health_reports_database(temp_db):
    status, _, data = _get("/health")
    assert status == 200
    assert data["status"] == "ok"
    assert data["db_path"].endswith("test.db")


def test_engine_failures_propagate(impact_world):
    with patch("app.ImpactEngine.compute_assignment_impact", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError, match="boom"):
            _get(f"/assignments/{impact_world['assignments']['fractions']}/impact")
