"""Tests for the assessment, response and audit endpoints, and the client against the live app."""

import pytest
from httpx import ASGITransport
from sqlalchemy import select

from assessment_platform.client import ClientContext
from assessment_platform.main import app
from assessment_platform.models import AuditLog, User
from assessment_platform.seed.demo_data import DEMO_PASSWORD
from assessment_platform.services.assessment_manager import AssessmentManager
from assessment_platform.services.audit_service import AuditService

BASE = "/api/v1"


async def create(client, headers, name: str = "Q3 ISO review", role: str = "customer_admin") -> dict:
    resp = await client.post(f"{BASE}/assessments", headers=headers(role),
                             json={"name": name, "templateId": "iso27001"})
    assert resp.status_code == 201, resp.text
    return resp.json()["assessment"]


async def transition(client, headers, assessment_id: str, status: str, role: str):
    return await client.put(f"{BASE}/assessments/{assessment_id}", headers=headers(role), json={"status": status})


async def mfa_question(client, headers) -> dict:
    resp = await client.get(f"{BASE}/questions", headers=headers("contributor"), params={"templateId": "iso27001"})
    assert resp.status_code == 200
    return next(q for q in resp.json()["questions"]
                if q["dimension_id"] == "access_control" and q["question_type"] == "multiple_choice")


class TestCreateAndRead:
    async def test_requires_token(self, client, seeded):
        resp = await client.get(f"{BASE}/assessments")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Access token required"}

    async def test_create(self, client, seeded, headers):
        assessment = await create(client, headers)
        assert assessment["status"] == "draft"
        assert assessment["assessment_name"] == "Q3 ISO review"
        assert assessment["template_name"] == "ISO/IEC 27001 Readiness"
        assert [d["id"] for d in assessment["dimensions"]][:2] == ["policies", "organization"]
        assert assessment["created_by"] == seeded["customer_admin"].user_id

    async def test_create_without_permission(self, client, seeded, headers):
        resp = await client.post(f"{BASE}/assessments", headers=headers("reviewer"),
                                 json={"name": "Nope", "templateId": "iso27001"})
        assert resp.status_code == 403
        assert resp.json()["success"] is False

    async def test_create_unknown_template(self, client, seeded, headers):
        resp = await client.post(f"{BASE}/assessments", headers=headers("customer_admin"),
                                 json={"name": "Nope", "templateId": "cobit"})
        assert resp.status_code == 404
        assert resp.json()["message"] == "Template not found: cobit"

    async def test_create_invalid_priority(self, client, seeded, headers):
        resp = await client.post(f"{BASE}/assessments", headers=headers("customer_admin"),
                                 json={"name": "Nope", "templateId": "iso27001", "priority": "urgent"})
        assert resp.status_code == 400

    async def test_list_is_role_scoped(self, client, seeded, headers):
        await create(client, headers)
        admin = await client.get(f"{BASE}/assessments", headers=headers("customer_admin"))
        contributor = await client.get(f"{BASE}/assessments", headers=headers("contributor"))
        superadmin = await client.get(f"{BASE}/assessments", headers=headers("reabel_superadmin"))
        assert admin.json()["total"] == 1
        assert contributor.json()["total"] == 0
        assert superadmin.json()["total"] == 1

    async def test_domain_manager_sees_assessments_touching_their_domains(self, client, seeded, headers):
        await create(client, headers)
        resp = await client.get(f"{BASE}/assessments", headers=headers("domain_manager"))
        assert resp.json()["total"] == 1

    async def test_get_lists_allowed_transitions(self, client, seeded, headers):
        assessment = await create(client, headers)
        resp = await client.get(f"{BASE}/assessments/{assessment['assessment_id']}", headers=headers("customer_admin"))
        assert resp.status_code == 200
        assert resp.json()["transitions"] == [{"to": "active", "label": "Activate"}]

    async def test_delete_is_soft_and_hides_the_row(self, client, seeded, headers):
        assessment = await create(client, headers)
        aid = assessment["assessment_id"]
        resp = await client.delete(f"{BASE}/assessments/{aid}", headers=headers("customer_admin"))
        assert resp.status_code == 200
        resp = await client.get(f"{BASE}/assessments/{aid}", headers=headers("customer_admin"))
        assert resp.status_code == 404
        assert resp.json()["message"] == "Assessment not found"


class TestWorkflowEndpoints:
    async def test_lifecycle_with_responses(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]

        resp = await transition(client, headers, aid, "active", "customer_admin")
        assert resp.status_code == 200
        body = resp.json()
        assert body["assessment"]["status"] == "active"
        assert body["assessment"]["active_by"] == seeded["customer_admin"].user_id
        assert body["transition"] == {
            "from": "draft", "to": "active",
            "postActions": [{"type": "notify", "ok": True, "skipped": False, "error": None}],
        }

        question = await mfa_question(client, headers)
        resp = await client.post(f"{BASE}/responses", headers=headers("contributor"), json={
            "assessmentId": aid, "questionId": question["question_id"],
            "responseData": {"selected": "privileged"},
        })
        assert resp.status_code == 201
        response = resp.json()["response"]
        assert (response["status"], response["score"]) == ("submitted", 4)

        resp = await transition(client, headers, aid, "in_review", "contributor")
        assert resp.status_code == 200
        assert resp.json()["assessment"]["reviewers"] == [seeded["reviewer"].user_id]

        resp = await client.put(f"{BASE}/responses/{response['response_id']}", headers=headers("reviewer"),
                                json={"approved": True, "comments": "Checked"})
        assert resp.status_code == 200
        assert resp.json()["response"]["status"] == "approved"

        resp = await transition(client, headers, aid, "approved", "reviewer")
        assert resp.status_code == 200
        approved = resp.json()["assessment"]
        assert approved["overall_score"] == 80.0
        assert approved["completion_percentage"] == 11

    async def test_failing_post_action_write_keeps_transition(self, client, seeded, headers, monkeypatch):
        async def notify_with_conflicting_write(manager, assessment, action):
            assessment.reviewers = ["u-ghost"]
            existing = seeded["reviewer"]
            manager.session.add(User(tenant_id=existing.tenant_id, role_id=existing.role_id,
                                     email=existing.email, full_name="Duplicate", password_hash="x"))
            await manager.session.flush()

        monkeypatch.setattr(AssessmentManager, "_notify", notify_with_conflicting_write)
        aid = (await create(client, headers))["assessment_id"]

        resp = await transition(client, headers, aid, "active", "customer_admin")

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["assessment"]["status"] == "active"
        assert body["assessment"]["reviewers"] == []
        [notify] = body["transition"]["postActions"]
        assert (notify["type"], notify["ok"]) == ("notify", False)

        resp = await client.get(f"{BASE}/assessments/{aid}", headers=headers("customer_admin"))
        assert resp.json()["assessment"]["status"] == "active"

    async def test_disallowed_transition_is_409(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        resp = await transition(client, headers, aid, "published", "customer_admin")
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "message": "Cannot transition from draft to published"}

    async def test_wrong_role_is_409(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        resp = await transition(client, headers, aid, "active", "contributor")
        assert resp.status_code == 409

    async def test_dimension_scores_update_summary(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        resp = await client.put(f"{BASE}/assessments/{aid}", headers=headers("customer_admin"), json={
            "dimensions": [{"id": "policies", "score": 2.5}, {"id": "access_control", "score": 4},
                           {"id": "cryptography", "score": 5}],
        })
        assert resp.status_code == 200
        assessment = resp.json()["assessment"]
        assert assessment["overall_score"] == 76.7
        assert assessment["completion_percentage"] == 33

    async def test_out_of_range_score_rejected(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        resp = await client.put(f"{BASE}/assessments/{aid}", headers=headers("customer_admin"),
                                json={"dimensions": [{"id": "policies", "score": 7}]})
        assert resp.status_code == 400
        assert resp.json()["field"] == "dimensions"

    async def test_invalid_answer_is_400(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        question = await mfa_question(client, headers)
        resp = await client.post(f"{BASE}/responses", headers=headers("contributor"), json={
            "assessmentId": aid, "questionId": question["question_id"],
            "responseData": {"selected": "sometimes"},
        })
        assert resp.status_code == 400
        assert "Invalid option" in resp.json()["message"]

    async def test_questions_need_template(self, client, seeded, headers):
        resp = await client.get(f"{BASE}/questions", headers=headers("contributor"))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Template ID is required"


class TestAuditEndpoints:
    async def test_trail_records_changes(self, client, seeded, headers):
        aid = (await create(client, headers))["assessment_id"]
        await transition(client, headers, aid, "active", "customer_admin")

        resp = await client.get(f"{BASE}/audit", headers=headers("reabel_consultant"),
                                params={"resourceId": aid})
        assert resp.status_code == 200
        body = resp.json()
        assert [e["event_type"] for e in body["items"]] == ["assessment_transitioned", "assessment_created"]
        assert body["total"] == 2

        resp = await client.get(f"{BASE}/audit/integrity", headers=headers("reabel_superadmin"))
        assert resp.json()["valid"] is True
        assert resp.json()["entries_checked"] == 2

    async def test_customer_admin_cannot_read_audit(self, client, seeded, headers):
        resp = await client.get(f"{BASE}/audit", headers=headers("customer_admin"))
        assert resp.status_code == 403

    async def test_tampered_entry_is_reported(self, client, seeded, headers, db_session):
        aid = (await create(client, headers))["assessment_id"]
        await transition(client, headers, aid, "active", "customer_admin")
        first = (await db_session.execute(select(AuditLog).order_by(AuditLog.id))).scalars().first()
        first.action = "Nothing happened"
        await db_session.commit()

        resp = await client.get(f"{BASE}/audit/integrity", headers=headers("reabel_superadmin"))

        body = resp.json()
        assert body["valid"] is False
        assert body["first_invalid"] == first.event_id
        assert body["reason"].startswith("current_hash mismatch")

    async def test_total_counts_every_filter(self, client, seeded, headers, db_session):
        first = (await create(client, headers, name="First review"))["assessment_id"]
        await create(client, headers, name="Second review")

        entries, total = await AuditService(db_session).query_entries(resource_id=first)

        assert total == 1
        assert [e.resource_id for e in entries] == [first]
        with pytest.raises(TypeError):
            await AuditService(db_session).query_entries(actor="system")


# ── Client services in API mode ──────────────────────────────────────────────

class TestClientAgainstApi:
    @pytest.fixture
    def transport(self, client):
        # Depends on `client` so the app's database and redis overrides are in place
        return ASGITransport(app=app)

    async def test_login_create_and_transition(self, seeded, api_settings, transport):
        ctx = ClientContext(api_settings, transport=transport)
        try:
            await ctx.auth.login("customer_admin@demo.reabel.io", DEMO_PASSWORD)
            await ctx.initialize()

            assert ctx.roles.current_role == "customer_admin"
            assert ctx.roles.has_permission("create", "assessments")
            assert ctx.assessments.get_template("iso27001") is not None

            assessment = await ctx.assessments.create_assessment({"title": "Client ISO review",
                                                                  "template_id": "iso27001"})
            assert assessment["status"] == "draft"
            assert assessment["title"] == "Client ISO review"

            outcome = await ctx.assessments.transition_state(assessment["id"], "active")
            assert outcome.entity["status"] == "active"
            assert [r.type for r in outcome.post_actions] == ["notify"]
        finally:
            await ctx.aclose()

    async def test_role_switch_goes_through_api(self, seeded, api_settings, transport):
        ctx = ClientContext(api_settings, transport=transport)
        try:
            await ctx.auth.login("customer_admin@demo.reabel.io", DEMO_PASSWORD)
            await ctx.initialize()
            old_token = ctx.store.get("session.token")

            await ctx.roles.switch_role("reviewer")

            assert ctx.roles.current_role == "reviewer"
            assert ctx.store.get("session.token") != old_token
            assert ctx.roles.has_permission("review", "responses")
            assert not ctx.roles.has_permission("create", "assessments")
        finally:
            await ctx.aclose()

    async def test_role_switch_refetches_scoped_assessments(self, seeded, api_settings, transport):
        ctx = ClientContext(api_settings, transport=transport)
        try:
            await ctx.auth.login("customer_admin@demo.reabel.io", DEMO_PASSWORD)
            await ctx.initialize()
            draft = await ctx.assessments.create_assessment({"title": "Scoped review", "template_id": "iso27001"})
            await ctx.assessments.load_user_assessments()
            assert draft["id"] in [a["id"] for a in ctx.assessments.get_assessments()]

            await ctx.roles.switch_role("reviewer")
            assert draft["id"] not in [a["id"] for a in ctx.assessments.get_assessments()]
            await ctx.assessments.reloading
            assert draft["id"] not in [a["id"] for a in ctx.assessments.get_assessments()]

            await ctx.roles.switch_role("customer_admin")
            await ctx.assessments.reloading
            assert draft["id"] in [a["id"] for a in ctx.assessments.get_assessments()]
            assert "assessments" in ctx.loader.cache_status()["cached"]
        finally:
            await ctx.aclose()
