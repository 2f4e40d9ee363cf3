"""Tests for context assembly and prompt building."""

from datetime import date, datetime

from kardia_engine.models.reply import CanonicalReply
from kardia_engine.services.context_assembly import (
    NO_PROFILE,
    STRUCTURED_REPLY_PLACEHOLDER,
    AssembledContext,
    AssessmentSummary,
    ContextAssembler,
    HistoryTurn,
    ProfileSnapshot,
    StoredMessage,
    age_from_birthdate,
)
from kardia_engine.services.prompt_assembly import DEFAULT_POLICY_TEMPLATE, build_prompt


class FakeContextStore:
    def __init__(self, profile=None, messages=None, assessments=None, fail=()):
        self.profile = profile
        self.messages = messages or []
        self.assessments = assessments or []
        self.fail = set(fail)
        self.message_limits = []

    def load_profile_snapshot(self, user_id):
        if "profile" in self.fail:
            raise RuntimeError("profile store down")
        return self.profile

    def load_recent_messages(self, conversation_id, limit):
        if "messages" in self.fail:
            raise RuntimeError("message store down")
        self.message_limits.append(limit)
        return self.messages[-limit:]

    def load_recent_assessments(self, user_id, limit):
        if "assessments" in self.fail:
            raise RuntimeError("assessment store down")
        return self.assessments[:limit]


def user(i, text):
    return StoredMessage(id=i, role="user", content=text)


def model(i, content):
    return StoredMessage(id=i, role="model", content=content)


def test_age_from_birthdate():
    assert age_from_birthdate(date(1980, 6, 15), today=date(2025, 6, 14)) == 44
    assert age_from_birthdate(date(1980, 6, 15), today=date(2025, 6, 15)) == 45
    assert age_from_birthdate(None) is None


def test_missing_profile_yields_marker():
    context = ContextAssembler(FakeContextStore(profile=None)).assemble("u1", "c1")

    assert context.profile is NO_PROFILE
    assert context.profile.missing


def test_store_failures_never_abort_assembly():
    store = FakeContextStore(fail={"profile", "messages", "assessments"})

    context = ContextAssembler(store).assemble("u1", "c1")

    assert context.profile is NO_PROFILE
    assert context.history == []
    assert context.assessments == []


def test_history_window_is_bounded_oldest_first_and_excludes_current_turn():
    messages = [user(i, f"message {i}") for i in range(1, 15)]
    store = FakeContextStore(messages=messages)

    context = ContextAssembler(store, max_messages=10).assemble("u1", "c1", exclude_message_id=14)

    assert store.message_limits == [11]
    assert [t.text for t in context.history] == [f"message {i}" for i in range(4, 14)]


def test_model_turns_reduced_to_first_text_or_placeholder():
    messages = [
        user(1, "hello"),
        model(2, CanonicalReply.of_paragraphs("First paragraph.", "Second.").to_json()),
        model(3, '{"reply_components": [{"kind": "list", "items": ["a", "b"]}]}'),
        model(4, "not json"),
    ]

    context = ContextAssembler(FakeContextStore(messages=messages)).assemble("u1", "c1")

    assert context.history == [
        HistoryTurn(role="user", text="hello"),
        HistoryTurn(role="model", text="First paragraph."),
        HistoryTurn(role="model", text=STRUCTURED_REPLY_PLACEHOLDER),
        HistoryTurn(role="model", text=STRUCTURED_REPLY_PLACEHOLDER),
    ]


def test_long_history_messages_are_truncated():
    context = ContextAssembler(
        FakeContextStore(messages=[user(1, "x" * 500)]),
        max_message_chars=200,
    ).assemble("u1", "c1")

    assert context.history[0].text == "x" * 200 + "..."


def test_assessments_bounded():
    summaries = [AssessmentSummary(datetime(2025, 1, d), 10.0 + d, "Moderate") for d in range(1, 6)]

    context = ContextAssembler(FakeContextStore(assessments=summaries), max_assessments=3).assemble("u1", "c1")

    assert len(context.assessments) == 3


PROFILE = ProfileSnapshot(first_name="Sari", age=52, sex="female", language="Indonesian")
CONTEXT = AssembledContext(
    profile=PROFILE,
    assessments=[AssessmentSummary(datetime(2025, 3, 5, 9, 30), 12.5, "Moderate Risk")],
    history=[HistoryTurn("user", "Hi"), HistoryTurn("model", "Hello Sari")],
)


def test_prompt_is_deterministic():
    first = build_prompt(None, "Indonesian", CONTEXT, "What should I eat?")
    second = build_prompt(None, "Indonesian", CONTEXT, "What should I eat?")

    assert first.request == second.request
    assert first.request.model_dump_json() == second.request.model_dump_json()


def test_prompt_layout():
    components = build_prompt(None, "Indonesian", CONTEXT, "What should I eat?")
    request = components.request

    assert "Always answer in Indonesian" in request.system_instruction
    assert "- Name: Sari" in request.system_instruction
    assert "- Current age: 52 years" in request.system_instruction
    assert "### Assessment on: 5 Mar 2025" in request.system_instruction
    assert "- Risk percentage: 12.5%" in request.system_instruction
    assert "- Risk category: Moderate Risk" in request.system_instruction
    assert [(t.role, t.text) for t in request.contents] == [
        ("user", "Hi"),
        ("model", "Hello Sari"),
        ("user", "What should I eat?"),
    ]


def test_custom_policy_template_gets_language():
    request = build_prompt("Speak {language} only.", "English", CONTEXT, "Hi").request

    assert request.system_instruction.startswith("Speak English only.")


def test_no_profile_and_no_assessments_are_stated():
    request = build_prompt(None, "English", AssembledContext(), "Hi").request

    assert "has not completed their profile" in request.system_instruction
    assert "never taken a risk assessment" in request.system_instruction


def test_oversized_payload_drops_oldest_history_first():
    history = [HistoryTurn("user", f"{i}" * 100) for i in range(10)]
    context = AssembledContext(history=history)
    fixed = len(build_prompt(None, "English", AssembledContext(), "new").request.system_instruction) + len("new")

    components = build_prompt(None, "English", context, "new", max_payload_chars=fixed + 350)

    kept = [t.text for t in components.request.contents[:-1]]
    assert kept == ["7" * 100, "8" * 100, "9" * 100]
    assert components.history_turns_dropped == 7
    assert components.request.char_count() <= fixed + 350


def test_payload_over_ceiling_without_history_is_still_built():
    components = build_prompt(None, "English", AssembledContext(), "new", max_payload_chars=10)

    assert components.history_turns_kept == 0
    assert components.request.contents[-1].text == "new"
    assert components.total_chars > 10


def test_default_template_requests_reply_components():
    assert '"reply_components"' in DEFAULT_POLICY_TEMPLATE
