import io

from openpyxl import load_workbook

SCOPE = {"department": "Science", "academic_year": "2024/2025", "term": "first"}
SCOPE_QUERY = "department=Science&academic_year=2024/2025&term=first"


def _upload(client, rows):
    payload = ("Student ID*,Term*,Academic Year*,Mathematics - Score,English - Score\n" + "\n".join(rows) + "\n")
    return client.post(
        "/v1/imports/results",
        files={"file": ("results.csv", payload.encode("utf-8"), "text/csv")},
    )


def _ranking_query(school):
    return f"class_id={school.school_class.id}&term=first&academic_year=2024/2025"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Latency-Ms" in response.headers


def test_scale_round_trip_and_resolve(client, school):
    response = client.put("/v1/grading/scales", json={
        "scope": SCOPE,
        "bands": [
            {"from_percentage": 80, "to_percentage": 100, "grade": "A", "remark": "Excellent"},
            {"from_percentage": 0, "to_percentage": 79, "grade": "F", "remark": "Fail"},
        ],
    })
    assert response.status_code == 200
    assert response.json()["success"] is True

    bands = client.get("/v1/grading/scales?department=Science&academic_year=2024/2025&term=1st").json()["data"]["bands"]
    assert [b["grade"] for b in bands] == ["A", "F"]

    resolved = client.post("/v1/grading/resolve", json={"score": 85, "scope": SCOPE}).json()
    assert resolved["data"]["grade"] == "A"


def test_engine_errors_map_to_status_codes(client, school):
    missing = client.post("/v1/grading/resolve", json={"score": 50, "scope": {**SCOPE, "term": "third"}})
    assert missing.status_code == 409
    assert missing.json()["success"] is False
    assert missing.json()["error"]["code"] == "NO_SCALE_CONFIGURED"

    out_of_range = client.post("/v1/grading/resolve", json={"score": 150, "scope": SCOPE})
    assert out_of_range.status_code == 422
    assert out_of_range.json()["error"]["code"] == "SCORE_OUT_OF_RANGE"

    clamped = client.post("/v1/grading/resolve", json={"score": 150, "scope": SCOPE, "policy": "clamp"})
    assert clamped.json()["data"] == {"grade": "A", "remark": "Excellent", "clamped": True}

    overlapping = client.put("/v1/grading/scales", json={
        "scope": SCOPE,
        "bands": [
            {"from_percentage": 50, "to_percentage": 100, "grade": "A", "remark": "Good"},
            {"from_percentage": 0, "to_percentage": 60, "grade": "F", "remark": "Fail"},
        ],
    })
    assert overlapping.status_code == 409
    assert overlapping.json()["error"]["code"] == "CONFIGURATION_ERROR"

    assert client.get("/v1/results/999").status_code == 404
    assert client.get("/v1/results/?class_id=1&term=fourth&academic_year=2024/2025").status_code == 422


def test_assessment_type_endpoints(client, school):
    presets = client.get("/v1/grading/assessment-types/presets").json()["data"]
    four_ca = next(p for p in presets if p["name"] == "4-CA Split")

    saved = client.put("/v1/grading/assessment-types", json={"scope": SCOPE, "config": four_ca})
    assert saved.status_code == 200
    listed = client.get(f"/v1/grading/assessment-types?{SCOPE_QUERY}").json()["data"]
    assert [c["name"] for c in listed] == ["4-CA Split"]

    bad = client.put("/v1/grading/assessment-types", json={
        "scope": SCOPE, "config": {"name": "Broken", "components": [{"name": "ca", "max_score": 30}]},
    })
    assert bad.status_code == 409


def test_import_then_ranked_view(client, school):
    response = _upload(client, [
        "STU001,first,2024/2025,90,90",
        "STU002,first,2024/2025,150,80",
        "STU003,first,2024/2025,100,80",
    ])
    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["imported"], data["error_count"]) == (2, 1)
    assert data["issues"][0]["code"] == "SCORE_OUT_OF_RANGE"

    views = client.get(f"/v1/results/?{_ranking_query(school)}").json()["data"]
    assert [(v["student_number"], v["position"], v["position_label"]) for v in views] == [
        ("STU001", 1, "1st"), ("STU003", 1, "1st"),
    ]


def test_subject_mark_update_reranks(client, school):
    _upload(client, ["STU001,first,2024/2025,80,80", "STU002,first,2024/2025,70,70"])
    views = client.get(f"/v1/results/?{_ranking_query(school)}").json()["data"]
    second = next(v for v in views if v["student_number"] == "STU002")
    assert second["position"] == 2

    response = client.put(
        f"/v1/results/{second['result_id']}/subjects/{school.mathematics.id}",
        json={"components": {"score": 100}},
    )
    assert response.status_code == 200
    assert response.json()["data"]["grade"] == "A"

    detail = client.get(f"/v1/results/{second['result_id']}").json()["data"]
    assert detail["position"] == 1
    assert detail["total_score"] == 170.0

    invalid = client.put(
        f"/v1/results/{second['result_id']}/subjects/{school.mathematics.id}",
        json={"components": {"score": 120}},
    )
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "INVALID_COMPONENT_SCORE"


def test_approve_and_delete(client, school):
    _upload(client, ["STU001,first,2024/2025,90,90"])
    result_id = client.get(f"/v1/results/?{_ranking_query(school)}").json()["data"][0]["result_id"]

    approved = client.post(f"/v1/results/{result_id}/approve", json={"teacher_approved": True}).json()["data"]
    assert approved == {"result_id": result_id, "teacher_approved": True, "admin_approved": False}

    assert client.delete(f"/v1/results/{result_id}").status_code == 200
    assert client.get(f"/v1/results/{result_id}").status_code == 404


def test_export_and_templates(client, school):
    _upload(client, ["STU001,first,2024/2025,90,90"])

    exported = client.get(f"/v1/results/export?{_ranking_query(school)}&format=csv")
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    assert "Ama Mensah" in exported.text

    template = client.get("/v1/imports/templates/results?components=ca1&components=exam")
    assert template.status_code == 200
    ws = load_workbook(io.BytesIO(template.content))["Data"]
    headers = [c.value for c in ws[1]]
    assert "English - CA1" in headers and "Mathematics - Exam" in headers

    students = client.get("/v1/imports/templates/students?format=csv")
    assert students.text.startswith("Student ID*,Full Name*")


def test_unreadable_upload_is_400(client, school):
    response = client.post(
        "/v1/imports/results",
        files={"file": ("results.xlsx", b"not a workbook", "application/octet-stream")},
    )
    assert response.status_code == 400
    assert response.json()["data"]["status"] == "failed"


def test_student_upload(client, school):
    payload = b"Student ID*,Full Name*,Class\nSTU020,Kwame Nkansah,SHS 1 Science\n"
    response = client.post("/v1/imports/students", files={"file": ("students.csv", payload, "text/csv")})
    assert response.status_code == 200
    assert response.json()["data"]["created"] == 1


def test_mock_session_flow(client, school):
    session = client.post("/v1/mock/", json={"name": "BECE Mock 1", "academic_year": "2024/2025"}).json()["data"]
    scores = {"mathematics": 82, "english": 71, "social": 66, "science": 58, "rme": 90, "french": 77}

    for student in school.students[:2]:
        response = client.put(f"/v1/mock/{session['id']}/scores", json={"student_id": student.id, "scores": scores})
        assert response.status_code == 200

    rankings = client.get(f"/v1/mock/{session['id']}/rankings").json()["data"]
    assert [(r["position"], r["aggregate"]) for r in rankings] == [(1, 14), (1, 14)]
    assert client.get("/v1/mock/999/rankings").status_code == 404


def test_scale_change_that_strands_marks_is_rejected(client, school):
    assert _upload(client, ["STU001,first,2024/2025,80,60"]).status_code == 200

    response = client.put("/v1/grading/scales", json={
        "scope": SCOPE,
        "bands": [
            {"from_percentage": 90, "to_percentage": 100, "grade": "A", "remark": "Excellent"},
            {"from_percentage": 0, "to_percentage": 70, "grade": "F", "remark": "Fail"},
        ],
    })
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"

    bands = client.get(f"/v1/grading/scales?{SCOPE_QUERY}").json()["data"]["bands"]
    assert [b["grade"] for b in bands] == ["A", "B", "F"]
    view = client.get(f"/v1/results/?{_ranking_query(school)}").json()["data"][0]
    assert {s["subject_name"]: s["grade"] for s in view["subjects"]} == {"Mathematics": "B", "English": "F"}
