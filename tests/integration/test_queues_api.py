"""
Integration tests for the queue API endpoints.
"""

import pytest

from inbox_triage.db.models import Project


@pytest.fixture
def project(db, user):
    with db.session() as session:
        row = Project(user_id=user.id, name="Launch", status="active")
        session.add(row)
        session.flush()
    return row


class TestQueues:

    def test_needs_review_and_counts(self, client, headers, make_item, blob):
        low = make_item(ai_classification=blob(confidence=0.2))
        make_item(ai_classification=blob(confidence=0.95))
        deferred = make_item(ai_classification=blob(confidence=0.95), user_feedback={"deferred_to_weekly": True})

        needs_review = client.get("/api/v1/queues/needs-review", headers=headers).json()
        disagreements = client.get("/api/v1/queues/disagreements", headers=headers).json()
        counts = client.get("/api/v1/queues/counts", headers=headers).json()

        assert needs_review["queue"] == "needs_review"
        assert [i["id"] for i in needs_review["items"]] == [low.id]
        assert [i["id"] for i in disagreements["items"]] == [deferred.id]
        assert counts == {"needs_review": 1, "disagreements": 1, "mandatory": 2, "is_complete": False}

    def test_threshold_change_applies_on_next_read(self, client, headers, make_item, blob):
        item = make_item(ai_classification=blob(confidence=0.7))
        assert client.get("/api/v1/queues/needs-review", headers=headers).json()["count"] == 0

        client.patch("/api/v1/settings", json={"confidence_threshold": 0.75}, headers=headers)

        queue = client.get("/api/v1/queues/needs-review", headers=headers).json()
        assert [i["id"] for i in queue["items"]] == [item.id]

    def test_archive_all(self, client, headers, make_item, blob, load_item):
        item = make_item(ai_classification=blob(confidence=0.2))

        response = client.post("/api/v1/queues/needs_review/archive-all", headers=headers)

        assert response.json() == {"success": True, "count": 1}
        assert load_item(item.id).status == "archived"

    def test_file_all(self, client, headers, make_item, blob, project, load_item):
        item = make_item(ai_classification=blob(confidence=0.2))

        response = client.post(
            "/api/v1/queues/needs_review/file-all",
            json={"type": "project", "id": project.id},
            headers=headers,
        )

        assert response.json()["count"] == 1
        stored = load_item(item.id)
        assert stored.status == "reviewed"
        assert stored.user_feedback["filed_to"] == {"type": "project", "id": project.id}

    def test_file_all_unknown_destination(self, client, headers, make_item):
        make_item()

        response = client.post(
            "/api/v1/queues/needs_review/file-all",
            json={"type": "area", "id": "missing"},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "Area not found"

    def test_unknown_queue(self, client, headers):
        assert client.post("/api/v1/queues/everything/archive-all", headers=headers).status_code == 422
