"""Repository tests: persistence plus derived-view invalidation on every mutation."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from kardia_engine.cache import keys
from kardia_engine.llm.base import PersistenceFailure
from kardia_engine.models.conversation import ChatMessage, MessageRole
from kardia_engine.models.reply import CanonicalReply
from kardia_engine.repositories import (
    ConversationRepository,
    MessageRepository,
    ProfileRepository,
    RiskAssessmentRepository,
    SqlContextStore,
)
from kardia_engine.repositories.conversation_repository import EMPTY_SNIPPET, limit_text
from kardia_engine.services.dashboard import build_dashboard, calculate_trend


class TestConversationRepository:

    def test_title_is_first_message_truncated(self, db, cache):
        conversation = ConversationRepository(db, cache).create("u1", "  " + "a" * 60)

        assert conversation.title == "a" * 40 + "..."
        assert limit_text("short", 40) == "short"

    def test_new_conversation_shows_placeholder_snippet(self, db, cache):
        repo = ConversationRepository(db, cache)
        repo.create("u1", "Hello")

        listing = repo.list_for_user("u1")

        assert listing[0]["title"] == "Hello"
        assert listing[0]["last_message_snippet"] == EMPTY_SNIPPET

    def test_list_is_cached_until_a_mutation(self, db, cache):
        repo = ConversationRepository(db, cache)
        conversation = repo.create("u1", "Hello")
        repo.list_for_user("u1")
        assert keys.conversation_list_key("u1") in cache

        repo.update_title(conversation, "Renamed")

        assert keys.conversation_list_key("u1") not in cache
        assert repo.list_for_user("u1")[0]["title"] == "Renamed"

    def test_rename_drops_detail_and_list(self, db, cache):
        repo = ConversationRepository(db, cache)
        conversation = repo.create("u1", "Hello")
        repo.list_for_user("u1")
        repo.get_detail(conversation.id)

        repo.update_title(conversation, "New title")

        for key in keys.conversation_dependents("u1", conversation.id):
            assert key not in cache
        assert repo.get_detail(conversation.id)["title"] == "New title"

    def test_lists_are_per_owner(self, db, cache):
        repo = ConversationRepository(db, cache)
        repo.create("u1", "Mine")
        repo.create("u2", "Theirs")

        assert [c["title"] for c in repo.list_for_user("u1")] == ["Mine"]
        assert [c["title"] for c in repo.list_for_user("u2")] == ["Theirs"]

    def test_detail_parses_model_turns(self, db, cache):
        repo = ConversationRepository(db, cache)
        messages = MessageRepository(db, cache)
        conversation = repo.create("u1", "Hello")
        reply = CanonicalReply.of_paragraphs("Hi there.")
        messages.append(conversation.id, MessageRole.USER, "Hello")
        messages.append(conversation.id, MessageRole.MODEL, reply.to_json())

        detail = repo.get_detail(conversation.id)

        assert [m["role"] for m in detail["messages"]] == ["user", "model"]
        assert detail["messages"][0]["content"] == "Hello"
        assert detail["messages"][1]["content"] == reply.to_dict()

    def test_detail_of_missing_conversation_is_none(self, db, cache):
        assert ConversationRepository(db, cache).get_detail("missing") is None

    def test_delete_removes_messages_and_views(self, db, cache):
        repo = ConversationRepository(db, cache)
        messages = MessageRepository(db, cache)
        conversation = repo.create("u1", "Hello")
        conversation_id = conversation.id
        messages.append(conversation_id, MessageRole.USER, "Hello")
        repo.list_for_user("u1")
        repo.get_detail(conversation_id)

        repo.delete(conversation)

        assert repo.get(conversation_id) is None
        assert db.query(ChatMessage).filter(ChatMessage.conversation_id == conversation_id).count() == 0
        assert keys.conversation_detail_key(conversation_id) not in cache
        assert repo.list_for_user("u1") == []

    def test_most_recently_active_first(self, db, cache):
        repo = ConversationRepository(db, cache)
        older = repo.create("u1", "Older")
        newer = repo.create("u1", "Newer")
        older.updated_at = datetime(2025, 1, 2)
        newer.updated_at = datetime(2025, 1, 1)
        db.commit()

        assert [c["title"] for c in repo.list_for_user("u1")] == ["Older", "Newer"]


class TestMessageRepository:

    def test_append_invalidates_and_updates_snippet(self, db, cache):
        conversations = ConversationRepository(db, cache)
        messages = MessageRepository(db, cache)
        conversation = conversations.create("u1", "Hello")
        conversations.list_for_user("u1")

        messages.append(conversation.id, MessageRole.USER, "Hello")
        messages.append(
            conversation.id,
            MessageRole.MODEL,
            CanonicalReply.of_paragraphs("A fairly long answer that will not fit in a snippet.").to_json(),
        )

        assert keys.conversation_list_key("u1") not in cache
        snippet = conversations.list_for_user("u1")[0]["last_message_snippet"]
        assert snippet == "A fairly long answer that will not fit i..."

    def test_append_to_missing_conversation_fails(self, db, cache):
        with pytest.raises(PersistenceFailure):
            MessageRepository(db, cache).append("missing", MessageRole.USER, "Hi")

    def test_list_recent_is_oldest_first_and_bounded(self, db, cache):
        conversation = ConversationRepository(db, cache).create("u1", "Hello")
        messages = MessageRepository(db, cache)
        for i in range(5):
            messages.append(conversation.id, MessageRole.USER, f"m{i}")

        assert [m.content for m in messages.list_recent(conversation.id, 3)] == ["m2", "m3", "m4"]
        assert messages.list_recent(conversation.id, 0) == []
        assert len(messages.list_recent(conversation.id, 10)) == 5

    def test_commit_failure_becomes_persistence_failure(self, db, cache, monkeypatch):
        conversation = ConversationRepository(db, cache).create("u1", "Hello")

        def broken_commit():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(PersistenceFailure):
            MessageRepository(db, cache).append(conversation.id, MessageRole.USER, "Hi")


class TestProfileRepository:

    def test_upsert_creates_then_updates(self, db, cache):
        repo = ProfileRepository(db, cache)

        repo.upsert("u1", first_name="Sari", language="English")
        repo.upsert("u1", language="Indonesian")

        view = repo.get_view("u1")
        assert view["first_name"] == "Sari"
        assert view["language"] == "Indonesian"

    def test_upsert_invalidates_cached_view(self, db, cache):
        repo = ProfileRepository(db, cache)
        repo.upsert("u1", first_name="Sari")
        repo.get_view("u1")
        assert keys.profile_key("u1") in cache

        repo.upsert("u1", first_name="Sarah")

        assert keys.profile_key("u1") not in cache
        assert repo.get_view("u1")["first_name"] == "Sarah"

    def test_unknown_field_is_rejected(self, db, cache):
        with pytest.raises(ValueError):
            ProfileRepository(db, cache).upsert("u1", nickname="S")

    def test_snapshot_computes_age(self, db, cache):
        repo = ProfileRepository(db, cache)
        repo.upsert("u1", first_name="Sari", date_of_birth=date(1970, 3, 10), sex="female")

        snapshot = repo.get_snapshot("u1", today=date(2025, 3, 9))

        assert snapshot.age == 54
        assert snapshot.first_name == "Sari"
        assert not snapshot.missing

    def test_snapshot_for_unknown_user_is_none(self, db, cache):
        assert ProfileRepository(db, cache).get_snapshot("nobody") is None


def _report(title, code="X"):
    return {"riskSummary": {"riskCategory": {"code": code, "title": title}}}


class TestRiskAssessmentRepository:

    def test_create_and_attach_invalidate_digest_and_dashboard(self, db, cache):
        repo = RiskAssessmentRepository(db, cache)
        assessment = repo.create("u1", 12.0)
        repo.list_recent_summaries("u1")
        repo.list_for_dashboard("u1")
        assert all(key in cache for key in keys.assessment_dependents("u1"))

        repo.attach_report(assessment, _report("Moderate Risk"))

        assert all(key not in cache for key in keys.assessment_dependents("u1"))
        assert repo.list_recent_summaries("u1")[0].category == "Moderate Risk"

    def test_category_is_na_before_report(self, db, cache):
        repo = RiskAssessmentRepository(db, cache)
        repo.create("u1", 12.0)

        assert repo.list_recent_summaries("u1")[0].category == "N/A"

    def test_summaries_are_newest_first_and_bounded(self, db, cache):
        repo = RiskAssessmentRepository(db, cache, digest_size=3)
        for day, risk in enumerate([10.0, 11.0, 12.0, 13.0, 14.0], start=1):
            assessment = repo.create("u1", risk)
            assessment.created_at = datetime(2025, 1, day)
        db.commit()

        summaries = repo.list_recent_summaries("u1", 3)
        assert [s.risk_percentage for s in summaries] == [14.0, 13.0, 12.0]
        assert [s.risk_percentage for s in repo.list_recent_summaries("u1", 5)] == [14.0, 13.0, 12.0, 11.0, 10.0]
        assert len(repo.list_recent_summaries("u1", 2)) == 2

    def test_context_store_reads_plain_data(self, db, cache):
        ProfileRepository(db, cache).upsert("u1", first_name="Sari")
        RiskAssessmentRepository(db, cache).create("u1", 9.5)
        conversation = ConversationRepository(db, cache).create("u1", "Hi")
        store = SqlContextStore.from_session(db, cache)

        stored = store.append_message(conversation.id, "user", "Hi")

        assert stored.role == "user"
        assert store.load_recent_messages(conversation.id, 5) == [stored]
        assert store.load_profile_snapshot("u1").first_name == "Sari"
        assert store.load_recent_assessments("u1", 3)[0].risk_percentage == 9.5


NOW = datetime(2025, 6, 30, 12, 0)


def _row(assessment_id, risk, created_at, title="Moderate Risk"):
    return {
        "id": assessment_id,
        "created_at": created_at.isoformat(),
        "final_risk_percentage": risk,
        "category_code": "MODERATE",
        "category_title": title,
        "result_details": _report(title),
    }


class TestDashboard:

    def test_no_assessments_yields_none(self):
        assert build_dashboard([], now=NOW) is None

    def test_first_assessment(self):
        dashboard = build_dashboard([_row("a1", 12.0, NOW)], now=NOW)

        trend = dashboard["summary"]["health_trend"]
        assert trend["direction"] == "stable"
        assert trend["text"] == "This is your first assessment."
        assert dashboard["summary"]["total_assessments"] == 1

    @pytest.mark.parametrize("latest, previous, direction", [
        (10.0, 15.5, "improving"),
        (15.5, 10.0, "worsening"),
        (10.05, 10.0, "stable"),
    ])
    def test_trend_direction(self, latest, previous, direction):
        trend = calculate_trend({"final_risk_percentage": latest}, {"final_risk_percentage": previous})

        assert trend["direction"] == direction

    def test_improving_text_reports_change(self):
        trend = calculate_trend({"final_risk_percentage": 10.0}, {"final_risk_percentage": 15.5})

        assert trend["change_value"] == -5.5
        assert trend["text"] == "Improved 5.5% from the previous assessment"

    def test_graph_covers_last_thirty_days_oldest_first(self):
        rows = [
            _row("a3", 11.0, NOW - timedelta(days=1)),
            _row("a2", 13.0, NOW - timedelta(days=10)),
            _row("a1", 20.0, NOW - timedelta(days=45)),
        ]

        dashboard = build_dashboard(rows, now=NOW)

        assert dashboard["graph_data_30_days"] == {"labels": ["20 Jun", "29 Jun"], "values": [13.0, 11.0]}
        assert [h["id"] for h in dashboard["assessment_history"]] == ["a3", "a2", "a1"]
        assert dashboard["assessment_history"][0]["date"] == "29 June 2025"
        assert dashboard["latest_assessment_details"] == _report("Moderate Risk")

    @pytest.mark.parametrize("details", [
        {"riskSummary": {"riskCategory": "High"}},
        {"riskSummary": "High"},
        {"riskSummary": {"riskCategory": {"title": 5}}},
        ["High"],
    ])
    def test_malformed_report_category_is_na(self, db, cache, details):
        repo = RiskAssessmentRepository(db, cache)
        assessment = repo.create("u1", 12.5)

        repo.attach_report(assessment, details)

        dashboard = build_dashboard(repo.list_for_dashboard("u1"), now=NOW)
        assert dashboard["summary"]["latest_status"]["category_title"] == "N/A"
        assert repo.list_recent_summaries("u1")[0].category == "N/A"
