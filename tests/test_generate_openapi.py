import json
import os

os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from flowly.generate_openapi import generate_openapi  # noqa: E402


def test_writes_schema_with_all_tags(tmp_path):
    out = tmp_path / "interfaces" / "openapi.json"
    path = generate_openapi(str(out))
    assert path == str(out)

    schema = json.loads(out.read_text(encoding="utf-8"))
    assert schema["info"]["title"] == "Flowly Backend"
    tags = {t["name"] for t in schema["tags"]}
    assert {"tasks", "habits", "goals", "dashboard", "profile", "assistant", "billing"} <= tags
    assert "/api/v1/goals/milestones/{milestone_id}/toggle" in schema["paths"]
    assert "/api/v1/billing/webhook" in schema["paths"]
