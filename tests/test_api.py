"""Tests for the HTTP API: routing, status codes and the error body."""
import base64

from agentflow_core.models import AgentRole


API = "/api/v1"


def _create_project(client, name="Recipe Box"):
    response = client.post(f"{API}/projects/", json={"name": name, "description": "Share family recipes"})
    assert response.status_code == 201
    return response.json()


class TestApp:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_not_found_body(self, client):
        response = client.get(f"{API}/projects/404")

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Project not found: 404"}

    def test_request_validation(self, client):
        response = client.post(f"{API}/projects/", json={"name": ""})

        assert response.status_code == 422


class TestProjectFlow:
    """Drive a project from idea to development over HTTP."""

    def test_create_and_list(self, client):
        project = _create_project(client)

        response = client.get(f"{API}/projects/")

        assert project["status"] == "ideation"
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["id"] == project["id"]

    def test_unknown_creator(self, client):
        response = client.post(f"{API}/projects/", json={"name": "X", "description": "Y", "created_by": 99})

        assert response.status_code == 404

    def test_idea_to_development(self, client, reviewer_id):
        project = _create_project(client)

        strategy = client.post(f"{API}/projects/{project['id']}/start")
        assert strategy.status_code == 201
        assert strategy.json()["proposal_type"] == "strategy"

        approved = client.post(
            f"{API}/proposals/{strategy.json()['id']}/approve", json={"reviewer_id": reviewer_id}
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert client.get(f"{API}/projects/{project['id']}").json()["status"] == "design"

        pending = client.get(f"{API}/proposals/pending").json()
        assert [p["proposal_type"] for p in pending] == ["task_assignment"]

        client.post(f"{API}/proposals/{pending[0]['id']}/approve", json={"reviewer_id": reviewer_id})
        assert client.get(f"{API}/projects/{project['id']}").json()["status"] == "development"

        tree = client.get(f"{API}/projects/{project['id']}/subsystems").json()
        assert tree[0]["name"] == "Web App"
        assert [m["name"] for m in tree[0]["modules"]] == ["Auth"]

        tasks = client.get(f"{API}/projects/{project['id']}/tasks").json()
        assert all(t["assignable"] for t in tasks)

    def test_reject_without_feedback(self, client, reviewer_id):
        project = _create_project(client)
        strategy = client.post(f"{API}/projects/{project['id']}/start").json()

        response = client.post(
            f"{API}/proposals/{strategy['id']}/reject", json={"reviewer_id": reviewer_id, "feedback": " "}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "feedback_required"

    def test_second_review_conflicts(self, client, reviewer_id):
        project = _create_project(client)
        strategy = client.post(f"{API}/projects/{project['id']}/start").json()
        client.post(f"{API}/proposals/{strategy['id']}/reject", json={"feedback": "Too vague"})

        response = client.post(f"{API}/proposals/{strategy['id']}/reject", json={"feedback": "Still vague"})

        assert response.status_code == 409
        assert response.json()["error"] == "already_reviewed"

    def test_revision_after_rejection(self, client):
        project = _create_project(client)
        strategy = client.post(f"{API}/projects/{project['id']}/start").json()
        client.post(f"{API}/proposals/{strategy['id']}/reject", json={"feedback": "Too vague"})

        revision = client.post(f"{API}/projects/{project['id']}/start", json={"revises": strategy["id"]})

        assert revision.status_code == 201
        assert revision.json()["revises_proposal_id"] == strategy["id"]
        assert client.get(f"{API}/proposals/{strategy['id']}").json()["status"] == "revised"

    def test_collaborator_failure_is_503(self, client, text_generator):
        project = _create_project(client)
        text_generator.fail = True

        response = client.post(f"{API}/projects/{project['id']}/start")

        assert response.status_code == 503
        assert response.json()["error"] == "external_unavailable"

    def test_skipping_phase_is_400(self, client):
        project = _create_project(client)

        response = client.post(f"{API}/projects/{project['id']}/advance", json={"event": "qa_signoff"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_transition"

    def test_knowledge_and_context(self, client):
        project = _create_project(client)

        created = client.post(
            f"{API}/projects/{project['id']}/knowledge",
            json={"key": "approved_strategy", "value": "Ship a web app first"},
        )
        built = client.get(f"{API}/projects/{project['id']}/context").json()

        assert created.status_code == 201
        assert built["approved_strategy"] == "Ship a web app first"

    def test_attachment_upload_and_delete(self, client, storage):
        project = _create_project(client)
        payload = {
            "file_name": "notes.txt",
            "mime_type": "text/plain",
            "file_data": base64.b64encode(b"hello").decode(),
        }

        uploaded = client.post(f"{API}/projects/{project['id']}/attachments", json=payload)
        assert uploaded.status_code == 201
        assert uploaded.json()["file_size"] == 5

        deleted = client.delete(f"{API}/projects/{project['id']}/attachments/{uploaded.json()['id']}")
        assert deleted.status_code == 204
        assert client.get(f"{API}/projects/{project['id']}/attachments").json() == []
        assert storage.objects == {}

    def test_attachment_with_invalid_base64(self, client):
        project = _create_project(client)

        response = client.post(
            f"{API}/projects/{project['id']}/attachments",
            json={"file_name": "notes.txt", "file_data": "not base64!"},
        )

        assert response.status_code == 400


class TestTaskEndpoints:
    """Task lifecycle over HTTP."""

    def test_full_lifecycle(self, client, make_task, agent_ids, reviewer_id):
        task = make_task()
        frontend = agent_ids[AgentRole.FRONTEND]

        assert client.post(f"{API}/tasks/{task.id}/assign", json={"agent_id": frontend}).json()["status"] == "assigned"
        progress = client.post(f"{API}/tasks/{task.id}/progress", json={"percent": 60, "note": "half way"})
        assert progress.json()["status"] == "in_progress"
        assert progress.json()["progress_percentage"] == 60

        completed = client.post(f"{API}/tasks/{task.id}/complete", json={"result": "Done"})
        assert completed.json()["status"] == "completed"

        approved = client.post(f"{API}/tasks/{task.id}/approve", json={"reviewer_id": reviewer_id})
        assert approved.json()["status"] == "approved"

        actions = [a["action"] for a in client.get(f"{API}/tasks/{task.id}/activity").json()]
        assert actions == ["task_assigned", "progress_reported", "task_completed", "task_approved"]
        assert client.get(f"{API}/agents/{frontend}").json()["status"] == "idle"

    def test_busy_agent_is_409(self, client, make_task, agent_ids):
        first, second = make_task("A"), make_task("B")
        frontend = agent_ids[AgentRole.FRONTEND]
        client.post(f"{API}/tasks/{first.id}/assign", json={"agent_id": frontend})

        response = client.post(f"{API}/tasks/{second.id}/assign", json={"agent_id": frontend})

        assert response.status_code == 409
        assert response.json()["error"] == "agent_busy"

    def test_invalid_transition_is_400(self, client, make_task):
        task = make_task()

        response = client.post(f"{API}/tasks/{task.id}/complete")

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_transition"

    def test_transitions(self, client, make_task):
        task = make_task()

        response = client.get(f"{API}/tasks/{task.id}/transitions")

        assert response.json()["allowed_transitions"] == ["assigned", "blocked"]

    def test_circular_dependency_is_409(self, client, make_task):
        a, b = make_task("A"), make_task("B")
        assert client.post(f"{API}/tasks/{a.id}/dependencies", json={"depends_on_task_id": b.id}).status_code == 201

        response = client.post(f"{API}/tasks/{b.id}/dependencies", json={"depends_on_task_id": a.id})

        assert response.status_code == 409
        assert response.json()["error"] == "circular_dependency"

    def test_unfinished_dependencies_filter(self, client, make_task):
        a, b = make_task("A"), make_task("B")
        client.post(f"{API}/tasks/{a.id}/dependencies", json={"depends_on_task_id": b.id})

        response = client.get(f"{API}/tasks/{a.id}/dependencies", params={"unfinished_only": True})

        assert [t["id"] for t in response.json()] == [b.id]

    def test_create_task_in_unknown_module(self, client):
        response = client.post(f"{API}/tasks/", json={"module_id": 999, "title": "X", "description": "Y"})

        assert response.status_code == 404

    def test_deliverables(self, client, make_task, agent_ids):
        task = make_task()
        client.post(f"{API}/tasks/{task.id}/assign", json={"agent_id": agent_ids[AgentRole.FRONTEND]})

        created = client.post(
            f"{API}/tasks/{task.id}/deliverables",
            json={"type": "code", "name": "Grid", "url": "https://git.test/pr/1"},
        )

        assert created.status_code == 201
        assert created.json()["agent_id"] == agent_ids[AgentRole.FRONTEND]
        assert len(client.get(f"{API}/tasks/{task.id}/deliverables").json()) == 1


class TestTaskExportEndpoints:
    def test_generate_promote_and_current(self, client, make_task, agent_ids, reviewer_id):
        task = make_task()
        client.post(f"{API}/tasks/{task.id}/assign", json={"agent_id": agent_ids[AgentRole.FRONTEND]})

        generated = client.post(
            f"{API}/task-export/specs", json={"project_id": make_task.project.id, "task_id": task.id}
        )
        assert generated.status_code == 201
        spec_id = generated.json()["id"]
        assert generated.json()["status"] == "pending_approval"
        assert "createdAt" in generated.json()

        assert [s["id"] for s in client.get(f"{API}/task-export/specs").json()] == [spec_id]

        promoted = client.post(f"{API}/task-export/specs/{spec_id}/try-promote", json={"reviewer_id": reviewer_id})
        assert promoted.status_code == 200
        assert promoted.json()["status"] == "approved"

        current = client.get(f"{API}/task-export/current").json()
        assert current["spec_id"] == spec_id
        assert current["occupied"] is True

        again = client.post(f"{API}/task-export/specs/{spec_id}/promote")
        assert again.status_code == 400

    def test_occupied_slot_is_409(self, client, make_task, agent_ids):
        first, second = make_task("A"), make_task("B", planned_role=AgentRole.BACKEND)
        client.post(f"{API}/tasks/{first.id}/assign", json={"agent_id": agent_ids[AgentRole.FRONTEND]})
        client.post(f"{API}/tasks/{second.id}/assign", json={"agent_id": agent_ids[AgentRole.BACKEND]})
        for task in (first, second):
            client.post(f"{API}/task-export/specs", json={"project_id": make_task.project.id, "task_id": task.id})
        client.post(f"{API}/task-export/specs/task-{first.id}/try-promote")

        response = client.post(f"{API}/task-export/specs/task-{second.id}/try-promote")

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_reject_spec(self, client, make_task, agent_ids):
        task = make_task()
        client.post(f"{API}/tasks/{task.id}/assign", json={"agent_id": agent_ids[AgentRole.FRONTEND]})
        client.post(f"{API}/task-export/specs", json={"project_id": make_task.project.id, "task_id": task.id})

        response = client.post(f"{API}/task-export/specs/task-{task.id}/reject", json={"feedback": "Too vague"})

        assert response.json()["status"] == "rejected"
        assert client.get(f"{API}/tasks/{task.id}").json()["status"] == "blocked"

    def test_unknown_spec(self, client):
        assert client.get(f"{API}/task-export/specs/task-5").status_code == 404
        assert client.get(f"{API}/task-export/specs/nonsense").status_code == 404


class TestSyncEndpoints:
    def test_run_and_status(self, client, make_task, task_list_client):
        make_task()

        report = client.post(f"{API}/sync/run").json()
        status = client.get(f"{API}/sync/status").json()

        assert report["created"] == 1
        assert status["running"] is False
        assert status["list_id"] == "list-1"
        assert status["last_report"]["created"] == 1

    def test_task_lists(self, client):
        response = client.get(f"{API}/sync/task-lists")

        assert response.json() == {"items": [{"id": "list-1", "title": "Orchestrator"}]}
