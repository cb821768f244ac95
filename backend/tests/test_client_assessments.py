"""Tests for the client assessment lifecycle, questionnaire answers and UI view models (local mode)."""

import json

import pytest
import pytest_asyncio

from assessment_platform.client import ClientContext, ClientSettings, EventBus, Events
from assessment_platform.client.components import DataTable, FormBuilder, Modal, RoleSwitcher, Sidebar, cell_value
from assessment_platform.client.notifications import NotificationService
from assessment_platform.errors import NotFound, PermissionDenied, TransitionNotAllowed, ValidationError
from assessment_platform.questions import ResponseData

ISO = "iso27001"
MFA = "iso27001.access_control.mfa"
OWNER = "iso27001.policies.owner"


@pytest_asyncio.fixture
async def ctx(local_settings):
    team = {"team": [
        {"id": "u-rita", "name": "Rita Reviewer", "role": "reviewer"},
        {"id": "u-carl", "name": "Carl Contributor", "role": "contributor"},
    ]}
    (local_settings.data_dir / "team.json").write_text(json.dumps(team))
    context = ClientContext(local_settings)
    await context.initialize()
    await context.auth.login("jane.doe@acme.io", "")
    yield context
    await context.aclose()


def record(bus: EventBus, event: Events) -> list:
    seen = []
    bus.on(event, seen.append)
    return seen


async def new_assessment(ctx, title: str = "Q3 ISO review") -> dict:
    return await ctx.assessments.create_assessment({"title": title, "template_id": ISO})


def scored(assessment: dict, scores: dict[str, float]) -> list[dict]:
    return [{**d, "score": scores.get(d["id"], d.get("score"))} for d in assessment["dimensions"]]


# ── Assessments ──────────────────────────────────────────────────────────────

class TestCreateAssessment:
    async def test_creates_draft_from_template(self, ctx):
        created = record(ctx.bus, Events.ASSESSMENT_CREATED)

        assessment = await new_assessment(ctx)

        assert assessment["id"].startswith("assess_")
        assert assessment["status"] == "draft"
        assert assessment["template_name"] == "ISO/IEC 27001 Readiness"
        assert len(assessment["dimensions"]) == 9
        assert all(d["score"] is None for d in assessment["dimensions"])
        assert assessment["created_by"] == ctx.store.get("user.id")
        assert created == [assessment]
        assert ctx.assessments.get_assessments() == [assessment]
        assert ctx.notifications.get_all()[-1].message == 'Assessment "Q3 ISO review" created successfully'

    @pytest.mark.parametrize("data,message", [
        ({"title": "ab", "template_id": ISO}, "Title must be at least 3 characters"),
        ({"title": "ab"}, "Title must be at least 3 characters"),
        ({"title": "Good title"}, "Template is required"),
        ({"title": "Bad_title!", "template_id": ISO}, "title format is invalid"),
        ({"title": "Good title", "template_id": "cobit"}, "Template not found"),
    ])
    async def test_validation_order(self, ctx, data, message):
        with pytest.raises((ValidationError, NotFound), match=message):
            await ctx.assessments.create_assessment(data)
        assert ctx.assessments.get_assessments() == []
        assert ctx.notifications.get_all()[-1].type == "error"

    async def test_requires_create_permission(self, ctx):
        await ctx.roles.switch_role("reviewer")
        with pytest.raises(PermissionDenied, match="Cannot create assessments"):
            await new_assessment(ctx)

    async def test_validation_runs_before_permission_check(self, ctx):
        await ctx.roles.switch_role("reviewer")
        with pytest.raises(ValidationError):
            await ctx.assessments.create_assessment({"title": "x"})


class TestQueries:
    async def test_filter_search_and_sort(self, ctx):
        a = await new_assessment(ctx, "Beta review")
        b = await new_assessment(ctx, "Alpha audit")
        await ctx.assessments.transition_state(b["id"], "active")

        assert [x["title"] for x in ctx.assessments.get_assessments(status="active")] == ["Alpha audit"]
        assert [x["id"] for x in ctx.assessments.get_assessments(search="BETA")] == [a["id"]]
        titles = [x["title"] for x in ctx.assessments.get_assessments(sort_by="title")]
        assert titles == ["Alpha audit", "Beta review"]
        titles = [x["title"] for x in ctx.assessments.get_assessments(sort_by="title", sort_order="desc")]
        assert titles == ["Beta review", "Alpha audit"]

    async def test_sort_numbers_with_zero_and_missing(self, ctx):
        a = await new_assessment(ctx, "Zero progress")
        b = await new_assessment(ctx, "Half done")
        await ctx.assessments.update_assessment(b["id"], {"progress": 50, "overall_score": 0.0})

        assert [x["id"] for x in ctx.assessments.get_assessments(sort_by="progress")] == [a["id"], b["id"]]
        assert [x["id"] for x in ctx.assessments.get_assessments(sort_by="progress", sort_order="desc")] == [
            b["id"], a["id"],
        ]
        # an unscored assessment sorts after a score of zero
        assert [x["id"] for x in ctx.assessments.get_assessments(sort_by="overall_score")] == [b["id"], a["id"]]

    async def test_unknown_assessment(self, ctx):
        assert await ctx.assessments.get_assessment("assess_missing") is None
        with pytest.raises(NotFound, match="Assessment not found"):
            await ctx.assessments.transition_state("assess_missing", "active")

    async def test_templates(self, ctx):
        assert [t["id"] for t in ctx.assessments.get_templates()] == ["iso27001", "nist_csf"]
        assert ctx.assessments.get_template("nist_csf")["name"] == "NIST Cybersecurity Framework"
        assert ctx.assessments.get_template("cobit") is None


class TestRoleScope:
    async def test_role_switch_rescopes_list(self, ctx):
        draft = await new_assessment(ctx)

        await ctx.roles.switch_role("reviewer")
        assert ctx.assessments.get_assessments() == []
        assert await ctx.assessments.get_assessment(draft["id"]) is None
        assert len(ctx.store.get("data.assessments")) == 0

        await ctx.roles.switch_role("customer_admin")
        assert [a["id"] for a in ctx.assessments.get_assessments()] == [draft["id"]]

    async def test_contributor_sees_only_assigned(self, ctx):
        mine = await new_assessment(ctx, "Assigned to me")
        await new_assessment(ctx, "Unassigned review")
        await ctx.assessments.assign_assessment(mine["id"], [{"user_id": ctx.store.get("user.id")}])

        await ctx.roles.switch_role("contributor")

        assert [a["id"] for a in ctx.assessments.get_assessments()] == [mine["id"]]

    async def test_role_switch_clears_role_dependent_cache(self, ctx):
        assert "navigation" in ctx.loader.cache_status()["cached"]

        await ctx.roles.switch_role("reviewer")

        cached = ctx.loader.cache_status()["cached"]
        assert not [k for k in cached if k.split("?")[0] in ("assessments", "navigation", "permissions")]
        assert "roles" in cached


class TestWorkflow:
    async def test_full_lifecycle(self, ctx):
        assessment = await new_assessment(ctx)
        aid = assessment["id"]
        await ctx.assessments.update_assessment(aid, {"dimensions": scored(assessment, {
            "policies": 2.5, "access_control": 4, "cryptography": 5,
        })})

        outcome = await ctx.assessments.transition_state(aid, "active")
        assert (outcome.from_state, outcome.to_state) == ("draft", "active")
        assert outcome.entity["status"] == "active"
        assert outcome.entity["active_by"] == ctx.store.get("user.id")
        assert [r.type for r in outcome.post_actions] == ["notify"]

        submitted = record(ctx.bus, Events.ASSESSMENT_SUBMITTED)
        await ctx.assessments.assign_assessment(aid, [{"user_id": ctx.store.get("user.id")}])
        await ctx.roles.switch_role("contributor")
        outcome = await ctx.assessments.transition_state(aid, "in_review")
        assert [r.type for r in outcome.post_actions] == ["assign", "notify"]
        assert all(r.ok for r in outcome.post_actions)
        assert outcome.entity["reviewers"] == ["u-rita"]
        assert len(submitted) == 1

        await ctx.roles.switch_role("reviewer")
        outcome = await ctx.assessments.transition_state(aid, "approved")
        assert outcome.entity["overall_score"] == 76.7
        assert outcome.entity["progress"] == 33

        await ctx.roles.switch_role("customer_admin")
        outcome = await ctx.assessments.transition_state(aid, "published")
        items = outcome.entity["action_items"]
        assert [i["dimension_id"] for i in items] == ["policies"]
        assert items[0]["title"] == "Improve Information Security Policies"
        assert items[0]["percentage"] == 50.0
        assert ctx.notifications.get_all()[-1].message == "Assessment moved to published"

    async def test_disallowed_transition(self, ctx):
        assessment = await new_assessment(ctx)
        with pytest.raises(TransitionNotAllowed) as exc:
            await ctx.assessments.transition_state(assessment["id"], "published")
        assert (exc.value.from_state, exc.value.to_state) == ("draft", "published")
        assert (await ctx.assessments.get_assessment(assessment["id"]))["status"] == "draft"

    async def test_role_not_in_transition_list(self, ctx):
        assessment = await new_assessment(ctx)
        await ctx.assessments.assign_assessment(assessment["id"], [{"user_id": ctx.store.get("user.id")}])
        await ctx.roles.switch_role("contributor")
        with pytest.raises(TransitionNotAllowed):
            await ctx.assessments.transition_state(assessment["id"], "active")

    async def test_failing_post_action_keeps_new_state(self, ctx):
        assessment = await new_assessment(ctx)
        await ctx.assessments.transition_state(assessment["id"], "active")
        await ctx.assessments.assign_assessment(assessment["id"], [{"user_id": ctx.store.get("user.id")}])
        ctx.loader.clear_cache("team")
        (ctx.settings.data_dir / "team.json").unlink()

        await ctx.roles.switch_role("contributor")
        outcome = await ctx.assessments.transition_state(assessment["id"], "in_review")

        assert outcome.entity["status"] == "in_review"
        assert [r.type for r in outcome.failed_actions] == ["assign"]
        assert outcome.post_actions[1].ok

    async def test_calculate_scores_directly(self, ctx):
        assessment = await new_assessment(ctx)
        await ctx.assessments.update_assessment(assessment["id"], {"dimensions": scored(assessment, {"policies": 5})})
        summary = await ctx.assessments.calculate_scores(assessment["id"])
        updated = await ctx.assessments.get_assessment(assessment["id"])
        assert summary.overall_score == 100
        assert updated["overall_score"] == 100
        assert next(d for d in updated["dimensions"] if d["id"] == "policies")["percentage"] == 100

    async def test_action_items_are_not_duplicated(self, ctx):
        assessment = await new_assessment(ctx)
        aid = assessment["id"]
        await ctx.assessments.update_assessment(aid, {"dimensions": scored(assessment, {"policies": 1, "hr_security": 4})})
        first = await ctx.assessments.generate_action_items(aid)
        second = await ctx.assessments.generate_action_items(aid)
        assert [i["dimension_id"] for i in first] == ["policies"]
        assert second == first


class TestUpdateAssignDeleteExport:
    async def test_update_requires_ownership_or_admin(self, ctx):
        assessment = await new_assessment(ctx)
        ctx.store.merge("user", {"id": "someone-else", "assigned_domains": ["policies"]})
        await ctx.roles.switch_role("domain_manager")
        with pytest.raises(PermissionDenied, match="Cannot update this assessment"):
            await ctx.assessments.update_assessment(assessment["id"], {"description": "changed"})

        await ctx.roles.switch_role("customer_admin")
        updated = await ctx.assessments.update_assessment(assessment["id"], {"description": "changed"})
        assert updated["description"] == "changed"

    async def test_assign(self, ctx):
        assessment = await new_assessment(ctx)
        updated = await ctx.assessments.assign_assessment(assessment["id"], [{"user_id": "u-carl"}, {"user_id": "u-carl"}])
        assert updated["assigned_to"] == ["u-carl"]
        assert ctx.notifications.get_all()[-1].message == "Assessment assigned to 2 user(s)"

        await ctx.roles.switch_role("contributor")
        with pytest.raises(PermissionDenied):
            await ctx.assessments.assign_assessment(assessment["id"], [{"user_id": "u-rita"}])

    async def test_delete(self, ctx):
        assessment = await new_assessment(ctx)
        deleted = record(ctx.bus, Events.DATA_DELETED)

        await ctx.assessments.delete_assessment(assessment["id"])

        assert ctx.assessments.get_assessments() == []
        assert deleted == [{"resource": "assessments", "id": assessment["id"]}]
        assert ctx.notifications.get_all()[-1].message == 'Assessment "Q3 ISO review" deleted'

    async def test_delete_requires_permission(self, ctx):
        assessment = await new_assessment(ctx)
        await ctx.roles.switch_role("domain_manager")
        with pytest.raises(PermissionDenied):
            await ctx.assessments.delete_assessment(assessment["id"])

    async def test_export(self, ctx):
        assessment = await new_assessment(ctx)
        document = json.loads(await ctx.assessments.export_assessment(assessment["id"]))
        assert document["assessment"]["id"] == assessment["id"]
        assert document["exported_by"] == "Jane Doe"
        assert document["exported_at"]

        await ctx.roles.switch_role("contributor")
        with pytest.raises(PermissionDenied):
            await ctx.assessments.export_assessment(assessment["id"])

    async def test_failures_show_error_toast(self, ctx):
        assessment = await new_assessment(ctx)

        with pytest.raises(TransitionNotAllowed):
            await ctx.assessments.transition_state(assessment["id"], "published")
        last = ctx.notifications.get_all()[-1]
        assert (last.type, last.message) == ("error", "Cannot transition from draft to published")

        await ctx.roles.switch_role("domain_manager")
        with pytest.raises(PermissionDenied):
            await ctx.assessments.delete_assessment(assessment["id"])
        last = ctx.notifications.get_all()[-1]
        assert (last.type, last.message) == ("error", "Permission denied: Cannot delete assessments")

        with pytest.raises(NotFound):
            await ctx.assessments.update_assessment("assess_missing", {"description": "x"})
        assert ctx.notifications.get_all()[-1].message == "Assessment not found"


# ── Questions and responses ──────────────────────────────────────────────────

class TestQuestionService:
    @pytest_asyncio.fixture
    async def aid(self, ctx):
        await ctx.questions.initialize(ISO)
        return (await new_assessment(ctx))["id"]

    async def test_questions_for_template(self, ctx, aid):
        assert len(ctx.questions.questions) == 12
        assert all(q["template_id"] == ISO for q in ctx.questions.questions)
        assert [q["id"] for q in ctx.questions.get_questions_by_dimension("access_control")] == [
            "iso27001.access_control.maturity", MFA,
        ]

    async def test_submit_scores_answer(self, ctx, aid):
        answered = record(ctx.bus, Events.QUESTION_ANSWERED)

        response = await ctx.questions.submit_response(aid, MFA, ResponseData(data={"selected": "privileged"}))

        assert response["status"] == "submitted"
        assert response["score"] == 4
        assert response["response_id"].startswith("resp_")
        assert answered == [response]
        assert ctx.questions.dimension_scores(aid) == {"access_control": 4.0}

    async def test_invalid_answer_is_rejected(self, ctx, aid):
        with pytest.raises(ValidationError, match="Invalid option"):
            await ctx.questions.submit_response(aid, MFA, ResponseData(data={"selected": "sometimes"}))
        assert ctx.questions.get_response(aid, MFA) is None

    async def test_rejected_answer_shows_error_toast(self, ctx, aid):
        with pytest.raises(ValidationError):
            await ctx.questions.submit_response(aid, MFA, ResponseData(data={"selected": "sometimes"}))
        last = ctx.notifications.get_all()[-1]
        assert last.type == "error"
        assert "Invalid option" in last.message

    async def test_draft_is_unscored(self, ctx, aid):
        draft = await ctx.questions.save_draft(aid, OWNER, ResponseData(text="x"))
        assert (draft["status"], draft["score"], draft["submitted_at"]) == ("draft", None, None)
        assert ctx.questions.get_progress(aid)["answered"] == 0

    async def test_unknown_question(self, ctx, aid):
        with pytest.raises(NotFound):
            await ctx.questions.submit_response(aid, "nope", ResponseData(text="x"))

    async def test_review_and_progress(self, ctx, aid):
        await ctx.questions.submit_response(aid, MFA, ResponseData(data={"selected": "all"}))
        await ctx.questions.submit_response(aid, OWNER, ResponseData(text="The CISO"))
        progress = ctx.questions.get_progress(aid)
        assert progress == {"total": 12, "answered": 2, "approved": 0, "pending": 2,
                            "remaining": 10, "percentage": 17}

        await ctx.roles.switch_role("reviewer")
        approved = record(ctx.bus, Events.REVIEW_APPROVED)
        reviewed = await ctx.questions.review_response(aid, MFA, True, "Evidence checked")
        assert reviewed["status"] == "approved"
        assert reviewed["reviewer_comments"] == "Evidence checked"
        assert approved == [reviewed]
        assert ctx.questions.get_progress(aid)["approved"] == 1
        assert ctx.questions.get_progress(aid)["pending"] == 1

        with pytest.raises(ValidationError, match="Only submitted responses"):
            await ctx.questions.review_response(aid, MFA, False)

    async def test_roles_without_grants(self, ctx, aid):
        await ctx.roles.switch_role("executive_viewer")
        with pytest.raises(PermissionDenied, match="Cannot submit responses"):
            await ctx.questions.submit_response(aid, OWNER, ResponseData(text="The CISO"))
        await ctx.roles.switch_role("contributor")
        await ctx.questions.submit_response(aid, OWNER, ResponseData(text="The CISO"))
        with pytest.raises(PermissionDenied):
            await ctx.questions.review_response(aid, OWNER, True)

    async def test_import_questions(self, ctx, aid):
        extra = {"id": "iso27001.policies.review", "template_id": ISO, "dimension_id": "policies",
                 "question_type": "text", "question_text": "How often is the policy reviewed?"}
        assert await ctx.questions.import_questions([extra, {**extra}]) == 1
        assert ctx.questions.get_question("iso27001.policies.review") is not None
        with pytest.raises(ValidationError):
            await ctx.questions.import_questions([{"id": "bad", "question_type": "slider"}])


# ── View models ──────────────────────────────────────────────────────────────

ROWS = [
    {"id": "a", "title": "Beta", "owner": {"name": "Ann"}, "score": 70},
    {"id": "b", "title": "alpha", "owner": {"name": "Bob"}, "score": None},
    {"id": "c", "title": "Gamma", "owner": {"name": "Cy"}, "score": 55},
    {"id": "d", "title": "delta", "owner": {"name": "Ann"}, "score": 90},
    {"id": "e", "title": "Epsilon", "owner": {"name": "Eve"}, "score": 10},
]
COLUMNS = [
    {"field": "title", "label": "Title", "sortable": True},
    {"field": "owner.name", "label": "Owner"},
    {"field": "score", "label": "Score", "sortable": True},
]


class TestDataTable:
    def table(self) -> DataTable:
        return DataTable(COLUMNS, ROWS, page_size=2)

    def ids(self, rows) -> list[str]:
        return [r["id"] for r in rows]

    def test_paging(self):
        table = self.table()
        assert table.total_pages == 3
        assert self.ids(table.page_rows()) == ["a", "b"]
        assert not table.go_to_page(4)
        assert table.go_to_page(3)
        assert self.ids(table.page_rows()) == ["e"]

    def test_sort_numbers_with_missing_last_then_flip(self):
        table = DataTable(COLUMNS, ROWS, page_size=10)
        table.sort("score")
        assert self.ids(table.filtered) == ["e", "c", "a", "d", "b"]
        table.sort("score")
        assert table.sort_direction == "desc"
        assert self.ids(table.filtered) == ["b", "d", "a", "c", "e"]

    def test_text_sort_ignores_case(self):
        table = DataTable(COLUMNS, ROWS, page_size=10)
        table.sort("title")
        assert self.ids(table.filtered) == ["b", "a", "d", "e", "c"]

    def test_unsortable_column_is_ignored(self):
        table = self.table()
        table.sort("owner.name")
        assert table.sort_column is None

    def test_search_nested_column_resets_page(self):
        table = self.table()
        table.go_to_page(2)
        table.search("ann")
        assert table.current_page == 1
        assert self.ids(table.filtered) == ["a", "d"]

    def test_selection(self):
        table = self.table()
        table.toggle_all()
        assert table.selected == {"a", "b"}
        table.toggle_all()
        assert table.selected == set()
        table.toggle_row("c")
        assert self.ids(table.selected_rows()) == ["c"]
        table.set_data(ROWS[:1])
        assert table.selected == set()

    def test_cell_value(self):
        assert cell_value(ROWS[0], "owner.name") == "Ann"
        assert cell_value(ROWS[0], "owner.name.first") is None
        assert cell_value(ROWS[0], lambda r: r["score"] * 2) == 140


class TestModal:
    def test_confirm_runs_callback_without_cancel(self):
        bus = EventBus()
        calls = []
        closed = record(bus, Events.UI_MODAL_CLOSE)
        modal = Modal(bus, on_confirm=lambda: calls.append("confirm"), on_cancel=lambda: calls.append("cancel"))
        modal.open(title="Delete assessment?")
        assert modal.is_open
        modal.confirm()
        assert calls == ["confirm"]
        assert not modal.is_open
        assert closed == [{"title": "Delete assessment?"}]

    def test_backdrop_click(self):
        calls = []
        modal = Modal(EventBus(), on_cancel=lambda: calls.append("cancel"))
        modal.open()
        modal.backdrop_click()
        assert calls == ["cancel"] and not modal.is_open

        modal.open(close_on_backdrop=False)
        modal.backdrop_click()
        assert modal.is_open

    def test_unknown_option(self):
        with pytest.raises(AttributeError):
            Modal(EventBus()).open(colour="red")


class TestFormBuilder:
    async def test_invalid_form_is_not_submitted(self, ctx):
        submitted = []
        form = FormBuilder(ctx.config.get_form_schema("assessment"), ctx.notifications, on_submit=submitted.append)

        assert not await form.submit()

        assert set(form.errors) == {"title", "template_id"}
        assert submitted == []
        assert ctx.notifications.get_all()[-1].message == "Please fix the errors in the form"

    async def test_submit_creates_assessment(self, ctx):
        form = FormBuilder(ctx.config.get_form_schema("assessment"), ctx.notifications,
                           on_submit=ctx.assessments.create_assessment)
        assert form.handle_change("title", "") == "Assessment Title is required"
        assert form.handle_change("title", "Q4 ISO review") is None
        form.handle_change("template_id", ISO)
        assert form.touched == {"title", "template_id"}

        assert await form.submit()
        assert not form.submitting
        assert [a["title"] for a in ctx.assessments.get_assessments()] == ["Q4 ISO review"]

    async def test_service_error_is_shown(self, ctx):
        form = FormBuilder(ctx.config.get_form_schema("assessment"), ctx.notifications,
                           values={"title": "Bad_title!", "template_id": ISO},
                           on_submit=ctx.assessments.create_assessment)
        assert not await form.submit()
        assert ctx.notifications.get_all()[-1].message == "title format is invalid"
        form.reset()
        assert form.values == {} and form.errors == {}


class TestSidebarAndRoleSwitcher:
    async def test_sidebar_follows_role(self, ctx):
        sidebar = Sidebar(ctx.bus, ctx.navigation, ctx.roles)
        sidebar.refresh()
        assert next(i for i in sidebar.menu_items if i["id"] == "team")["allowed"]

        await ctx.roles.switch_role("contributor")
        assert next(i for i in sidebar.menu_items if i["id"] == "team")["disabled"]

        toggles = record(ctx.bus, Events.UI_SIDEBAR_TOGGLE)
        assert sidebar.toggle_collapse()
        assert toggles == [{"collapsed": True}]

        sidebar.set_active("questionnaire")
        assert [i["id"] for i in sidebar.menu_items if i["active"]] == ["questionnaire"]
        sidebar.destroy()

    async def test_role_switcher(self, ctx):
        switcher = RoleSwitcher(ctx.bus, ctx.roles)
        assert switcher.toggle()
        assert not await switcher.switch_role("customer_admin")
        assert not switcher.is_open

        switcher.toggle()
        assert await switcher.switch_role("reviewer")
        assert switcher.current_role == "reviewer"
        assert not switcher.is_open

        assert not await switcher.switch_role("ghost")
        assert ctx.roles.current_role == "reviewer"
        assert set(switcher.categorized_roles()) == {"platform", "customer"}
        switcher.destroy()


def test_notification_service_standalone():
    service = NotificationService(EventBus(), ClientSettings(max_visible_notifications=1))
    service.info("first")
    service.info("second")
    assert [n.message for n in service.get_all()] == ["second"]
