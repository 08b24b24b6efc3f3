"""End-to-end tests for setup turns through the compiled graph."""

import json

import pytest

from studysetup import prompts
from studysetup.actions import (
    CompleteAction,
    FieldUpdateAction,
    FocusAction,
    MessageAction,
    StudyTypeOptionsAction,
    dump_actions,
)
from studysetup.extractors import extract_numbered_questions
from studysetup.graph import (
    StatusUpdater,
    StudyLocks,
    TurnInputError,
    build_graph,
    run_turn,
    validate_turn_request,
)
from studysetup.llm import AuthError, LLMTimeoutError, MockLLM, RateLimitError
from studysetup.normalizer import ERROR_MESSAGE

from conftest import InlineExecutor


QUESTIONS_PROPOSAL = (
    "Here are some questions:\n1. What do you do?\n2. Why?\n\nDo these look good?"
)


def _of_type(actions, cls):
    return [a for a in actions if isinstance(a, cls)]


class FailingStatusStore:
    def update_study_field(self, study_id, field, value):
        pass

    def set_study_status(self, study_id, status):
        raise RuntimeError("database unavailable")


# --- request validation ---

class TestValidateTurnRequest:
    def test_missing_study(self):
        with pytest.raises(TurnInputError, match="Study details are required"):
            validate_turn_request({"messages": []})

    def test_empty_study(self):
        with pytest.raises(TurnInputError):
            validate_turn_request({"messages": [], "study": {}})

    def test_messages_not_a_list(self):
        with pytest.raises(TurnInputError, match="Invalid messages format"):
            validate_turn_request({"messages": "hi", "study": {"id": "s"}})

    def test_message_content_not_string(self):
        with pytest.raises(TurnInputError):
            validate_turn_request({
                "messages": [{"role": "user", "content": 3}],
                "study": {"id": "s"},
            })

    def test_flags_converted(self):
        state = validate_turn_request({
            "messages": [],
            "study": {"id": "s"},
            "isEditing": True,
            "isInitialSetup": True,
        })
        assert state["is_editing"] is True
        assert state["is_initial_setup"] is True
        assert state["payload"] == {}

    def test_invalid_request_never_calls_llm(self, graph, services):
        with pytest.raises(TurnInputError):
            run_turn(graph, {"messages": [{"role": "user", "content": "hi"}]}, services)
        assert services["llm"].calls == []


# --- initial setup ---

class TestInitialSetup:
    def test_questions_only_missing(self, graph, services, questions_only_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": questions_only_study,
            "isInitialSetup": True,
        }, services)

        message, focus = actions
        assert isinstance(message, MessageAction)
        assert "when it comes to y?" in message.content
        assert "As one of z" in message.content
        assert len(extract_numbered_questions(message.content).splitlines()) == 5
        assert isinstance(focus, FocusAction)
        assert focus.section == "interview_questions"
        assert services["llm"].calls == []

    def test_other_fields_missing_prompts_first(self, graph, services, empty_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": empty_study,
            "isInitialSetup": True,
        }, services)
        assert actions[0].content == prompts.FIELD_PROMPTS["description"]
        assert actions[1].section == "description"


# --- explicit next ---

class TestNextField:
    def test_study_type_offers_options(self, graph, services, empty_study):
        study = {**empty_study, "description": "A study"}
        actions = run_turn(graph, {
            "messages": [],
            "study": study,
            "payload": {"action": "next"},
        }, services)

        options_actions = _of_type(actions, StudyTypeOptionsAction)
        assert len(options_actions) == 1
        options = options_actions[0].options
        assert len(options) == 4
        assert [o.value for o in options if o.recommended] == ["Exploratory"]
        assert _of_type(actions, FocusAction)[0].section == "study_type"
        assert services["llm"].calls == []

    def test_interview_questions_generated_and_saved(
        self, graph, services, mock_db, questions_only_study
    ):
        actions = run_turn(graph, {
            "messages": [],
            "study": questions_only_study,
            "payload": {"action": "next"},
        }, services)

        update = _of_type(actions, FieldUpdateAction)[0]
        assert update.field == "interview_questions"
        assert update.value.startswith("1. ")
        assert len(update.value.splitlines()) == 5
        assert mock_db.field_writes == [("study-1", "interview_questions", update.value)]

    def test_all_filled(self, graph, services, complete_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": complete_study,
            "payload": {"action": "next"},
        }, services)
        assert len(actions) == 1
        assert actions[0].content == prompts.ALL_COMPLETE_MESSAGE


# --- study type selection ---

class TestSelectStudyType:
    def test_valid_selection_saved(self, graph, services, mock_db, empty_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": empty_study,
            "payload": {"selectedStudyType": "attitudinal"},
        }, services)
        update = _of_type(actions, FieldUpdateAction)[0]
        assert update.value == "Attitudinal"
        assert mock_db.field_writes == [("study-1", "study_type", "Attitudinal")]

    def test_invalid_selection_reoffers_options(self, graph, services, mock_db, empty_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": empty_study,
            "payload": {"selectedStudyType": "Survey"},
        }, services)
        assert _of_type(actions, FieldUpdateAction) == []
        assert len(_of_type(actions, StudyTypeOptionsAction)) == 1
        assert mock_db.field_writes == []


# --- completion ---

class TestCompleteSetup:
    def test_complete_setup(self, graph, services, mock_db, complete_study):
        actions = run_turn(graph, {
            "messages": [],
            "study": complete_study,
            "payload": {"action": "complete_setup"},
        }, services)

        assert isinstance(actions[-1], CompleteAction)
        assert mock_db.field_writes == [
            ("study-1", "interview_questions", complete_study["interview_questions"]),
        ]
        assert mock_db.status_writes == [("study-1", "active")]
        assert mock_db.get_study("study-1")["inception_complete"] is True

    def test_complete_setup_twice_is_idempotent(self, graph, services, mock_db, complete_study):
        request = {
            "messages": [],
            "study": complete_study,
            "payload": {"action": "complete_setup"},
        }
        first = dump_actions(run_turn(graph, request, services))
        second = dump_actions(run_turn(graph, request, services))

        assert first == second
        questions = complete_study["interview_questions"]
        assert mock_db.field_writes == [
            ("study-1", "interview_questions", questions),
            ("study-1", "interview_questions", questions),
        ]
        assert mock_db.status_writes == [("study-1", "active"), ("study-1", "active")]

    def test_status_failure_does_not_fail_turn(self, complete_study):
        updater = StatusUpdater(FailingStatusStore(), executor=InlineExecutor())
        services = {"store": FailingStatusStore(), "status_updater": updater}
        graph = build_graph(services)

        actions = run_turn(graph, {
            "messages": [],
            "study": complete_study,
            "payload": {"action": "complete_setup"},
        }, services)

        assert isinstance(actions[-1], CompleteAction)
        assert updater.failures == 1

    def test_without_store_actions_pass_through(self, complete_study):
        graph = build_graph({})
        actions = run_turn(graph, {
            "messages": [],
            "study": complete_study,
            "payload": {"action": "complete_setup"},
        })
        assert isinstance(actions[-1], CompleteAction)


# --- free-text answers ---

class TestFreeText:
    def test_approval_saves_pending_questions(
        self, graph, services, mock_db, questions_only_study
    ):
        actions = run_turn(graph, {
            "messages": [
                {"role": "assistant", "content": QUESTIONS_PROPOSAL},
                {"role": "user", "content": "Yes, looks great"},
            ],
            "study": questions_only_study,
            "payload": {"activeSection": "interview_questions"},
        }, services)

        update, message, done = actions
        assert update.value == "1. What do you do?\n2. Why?"
        assert isinstance(done, CompleteAction)
        assert mock_db.status_writes == [("study-1", "active")]
        assert services["llm"].calls == []

    def test_answer_for_active_section(self, graph, services, mock_db, empty_study):
        actions = run_turn(graph, {
            "messages": [{"role": "user", "content": "Data analysts"}],
            "study": empty_study,
            "payload": {"activeSection": "target_audience"},
        }, services)

        assert actions[0].content == prompts.field_acknowledgement("target_audience")
        assert mock_db.field_writes == [("study-1", "target_audience", "Data analysts")]
        assert services["llm"].calls == []

    def test_active_section_from_message_envelope(self, graph, services, mock_db, empty_study):
        content = json.dumps({"message": "Learn onboarding pain", "activeSection": "objective"})
        run_turn(graph, {
            "messages": [{"role": "user", "content": content}],
            "study": empty_study,
        }, services)
        assert mock_db.field_writes == [("study-1", "objective", "Learn onboarding pain")]

    def test_answer_for_other_section_is_not_approval(
        self, graph, services, mock_db, empty_study
    ):
        actions = run_turn(graph, {
            "messages": [
                {"role": "assistant", "content": "Ideas so far:\n1. Reduce churn\n2. Improve onboarding"},
                {"role": "user", "content": "Continue improving the onboarding flow"},
            ],
            "study": empty_study,
            "payload": {"activeSection": "objective"},
        }, services)

        assert _of_type(actions, CompleteAction) == []
        assert mock_db.field_writes == [
            ("study-1", "objective", "Continue improving the onboarding flow"),
        ]
        assert mock_db.status_writes == []

    def test_free_text_invalid_study_type(self, graph, services, mock_db, empty_study):
        actions = run_turn(graph, {
            "messages": [{"role": "user", "content": "a survey I guess"}],
            "study": empty_study,
            "payload": {"activeSection": "study_type"},
        }, services)
        assert len(_of_type(actions, StudyTypeOptionsAction)) == 1
        assert mock_db.field_writes == []


# --- LLM fallback ---

class TestLLMFallback:
    def test_actions_applied_to_store(self, graph, services, mock_db, empty_study):
        services["llm"] = MockLLM([json.dumps({"actions": [
            {"type": "field_update", "field": "description", "value": "Dashboard study"},
            {"type": "message", "content": "Great! What type of study?"},
            {"type": "focus", "section": "study_type"},
        ]})])

        actions = run_turn(graph, {
            "messages": [{"role": "user", "content": "It's about our dashboard"}],
            "study": empty_study,
        }, services)

        assert [type(a) for a in actions] == [FieldUpdateAction, MessageAction, FocusAction]
        assert mock_db.field_writes == [("study-1", "description", "Dashboard study")]

        call = services["llm"].calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert call["model"] == "gpt-4o-mini"
        assert call["messages"][0]["role"] == "system"
        assert call["messages"][-1] == {"role": "user", "content": "It's about our dashboard"}

    def test_editing_prompt(self, graph, services, complete_study):
        services["llm"] = MockLLM(['{"message": "Sure"}'])
        run_turn(graph, {
            "messages": [{"role": "user", "content": "change the objective"}],
            "study": complete_study,
            "isEditing": True,
        }, services)
        system = services["llm"].calls[0]["messages"][0]["content"]
        assert "make changes" in system

    def test_history_roles_preserved(self, graph, services, empty_study):
        services["llm"] = MockLLM(['{"message": "ok"}'])
        run_turn(graph, {
            "messages": [
                {"role": "assistant", "content": "Hi!"},
                {"role": "user", "content": "hello"},
            ],
            "study": empty_study,
        }, services)
        roles = [m["role"] for m in services["llm"].calls[0]["messages"]]
        assert roles == ["system", "assistant", "user"]

    def test_unparseable_output_becomes_message(self, graph, services, mock_db, empty_study):
        services["llm"] = MockLLM(["Sorry, I can't do JSON today."])
        actions = run_turn(graph, {
            "messages": [{"role": "user", "content": "hello"}],
            "study": empty_study,
        }, services)
        assert len(actions) == 1
        assert actions[0].content == ERROR_MESSAGE
        assert mock_db.field_writes == []

    def test_timeouts_retried_then_raised(self, graph, services, empty_study):
        services["llm"] = MockLLM([LLMTimeoutError("slow")] * 3)
        with pytest.raises(LLMTimeoutError):
            run_turn(graph, {
                "messages": [{"role": "user", "content": "hello"}],
                "study": empty_study,
            }, services)
        assert len(services["llm"].calls) == 3

    def test_rate_limit_not_retried(self, graph, services, empty_study):
        services["llm"] = MockLLM([RateLimitError("429"), '{"message": "never"}'])
        with pytest.raises(RateLimitError):
            run_turn(graph, {
                "messages": [{"role": "user", "content": "hello"}],
                "study": empty_study,
            }, services)
        assert len(services["llm"].calls) == 1

    def test_missing_llm_raises_auth_error(self, empty_study):
        graph = build_graph({})
        with pytest.raises(AuthError):
            run_turn(graph, {
                "messages": [{"role": "user", "content": "hello"}],
                "study": empty_study,
            })


# --- per-study serialization ---

class TestStudyLocks:
    def test_same_study_same_lock(self):
        locks = StudyLocks()
        assert locks.for_study("a") is locks.for_study("a")
        assert locks.for_study(1) is locks.for_study("1")

    def test_different_studies_different_locks(self):
        locks = StudyLocks()
        assert locks.for_study("a") is not locks.for_study("b")

    def test_unused_locks_are_released(self):
        locks = StudyLocks()
        held = locks.for_study("a")
        locks.for_study("b")
        assert len(locks) == 1
        assert locks.for_study("a") is held
        del held
        assert len(locks) == 0
