"""
Unit tests for the translation session and its continuation protocol.
"""

import pytest

from reprogrammer.config.models import TranslationConfig
from reprogrammer.errors import GenerationServiceError, IncompleteTranslation
from reprogrammer.translator.session import TranslationSession, truncate_at_last_balanced_close
from tests.conftest import ScriptedService


def make_session(service, settings, **options):
    return TranslationSession(service, settings, TranslationConfig(**options))


def test_complete_response(java_settings):
    service = ScriptedService(["<response><code>int x = 1;</code></response>"])
    session = make_session(service, java_settings)

    code, history = session.translate("Translate", "x = 1")

    assert code == "int x = 1;"
    assert len(service.calls) == 1
    assert [m.role for m in history.messages] == ["system", "user", "assistant"]
    assert history.messages[-1].content == "<code>int x = 1;</code>"


def test_continuation_joins_fragments(java_settings):
    service = ScriptedService(
        ["<response><code>partial code without closing", "remaining code</code>"]
    )
    session = make_session(service, java_settings)

    code, _ = session.translate("Translate", "some source")

    assert code == "partial code without closingremaining code"
    assert len(service.calls) == 2
    # The continuation request replays what was produced so far
    assert service.calls[1][-2] == {"role": "assistant", "content": "<code>partial code without closing"}


def test_continuation_resumes_after_last_balanced_close(java_settings):
    service = ScriptedService(
        [
            "<code>class A {\n  void m() {\n  }\n  void n() {\n    partial",
            "  void n() {}\n}</code>",
        ]
    )
    session = make_session(service, java_settings)

    code, _ = session.translate("Translate", "source")

    assert code == "class A {\n  void m() {\n  }\n  void n() {}\n}"


def test_no_progress_ends_continuations_and_redo_is_bounded(java_settings):
    service = ScriptedService(["<code>class A {", ""])
    session = make_session(service, java_settings, max_redo_attempts=2)

    with pytest.raises(IncompleteTranslation) as excinfo:
        session.translate("Translate", "source")

    # 2 calls for the first attempt, 1 for each of the two redo attempts
    assert len(service.calls) == 4
    assert excinfo.value.partial_code == "class A {"


def test_redo_request_discards_progress(java_settings):
    service = ScriptedService(["no code here", "<code>done</code>"])
    session = make_session(service, java_settings)

    code, _ = session.translate("Translate", "source")

    assert code == "done"
    assert "start over" in service.calls[1][-1]["content"]


def test_missing_code_section_exhausts_redo_budget(java_settings):
    service = ScriptedService(["I refuse"])
    session = make_session(service, java_settings, max_redo_attempts=2)

    with pytest.raises(IncompleteTranslation):
        session.translate("Translate", "source")

    assert len(service.calls) == 3


def test_continuation_cap(java_settings):
    service = ScriptedService(["<code>start\n", "more\n"])
    session = make_session(service, java_settings, max_continuations=2, max_redo_attempts=0)

    with pytest.raises(IncompleteTranslation) as excinfo:
        session.translate("Translate", "source")

    assert len(service.calls) == 3
    assert excinfo.value.partial_code == "start\nmore\nmore\n"


def test_whitespace_chunk_is_not_sent(java_settings):
    service = ScriptedService(["<code>unused</code>"])
    session = make_session(service, java_settings)

    code, history = session.translate("Translate", "\n\n  \n")

    assert code == "\n\n  \n"
    assert service.calls == []
    assert len(history) == 1


def test_history_is_passed_in_and_handed_back(java_settings):
    service = ScriptedService(["<code>a</code>"])
    session = make_session(service, java_settings)
    history = session.new_history()

    _, updated = session.translate("Translate", "first", history=history)
    session.translate("Translate", "second", history=updated)

    assert len(history) == 1
    assert len(service.calls[1]) == 4  # system, user, assistant, new user


def test_service_exceptions_become_generation_errors(java_settings):
    class BrokenService(ScriptedService):
        def generate(self, conversation, max_output_tokens):
            raise ConnectionError("connection reset")

    session = make_session(BrokenService(), java_settings)

    with pytest.raises(GenerationServiceError, match="connection reset"):
        session.translate("Translate", "source")


def test_original_context_is_sent(java_settings):
    service = ScriptedService(["<code>x</code>"])
    session = make_session(service, java_settings)

    session.translate("Translate", "source", original_context="class Helper {}")

    assert "class Helper {}" in service.calls[0][-1]["content"]


# =============================================================================
# Meta questions
# =============================================================================


@pytest.mark.parametrize(
    "answer, expected",
    [("<code>yes</code>", True), ("<code>no</code>", False), ("hmm", True)],
)
def test_ask_yes_no(java_settings, answer, expected):
    session = make_session(ScriptedService([answer]), java_settings)

    assert session.ask_yes_no("Are these errors real?", "Line 1: oops") is expected


def test_suggest_name(java_settings):
    session = make_session(ScriptedService(["<code>OrderService</code>"]), java_settings)
    assert session.suggest_name("order_service", "...") == "OrderService"

    session = make_session(ScriptedService(["<code>Not a name!</code>"]), java_settings)
    assert session.suggest_name("order_service", "...") == "order_service"


def test_summarize(java_settings):
    session = make_session(ScriptedService(["<code>class Item: holds stock</code>"]), java_settings)

    assert session.summarize("item.py", "class Item: ...") == "class Item: holds stock"


# =============================================================================
# Truncation
# =============================================================================


def test_truncate_at_last_balanced_close():
    assert truncate_at_last_balanced_close("a {\n b }\n c {", "{", "}") == "a {\n b }\n"
    assert truncate_at_last_balanced_close("a { b } c", "{", "}") == "a { b }"
    assert truncate_at_last_balanced_close("no braces", "{", "}") == "no braces"
    assert truncate_at_last_balanced_close("x }", "{", "}") == "x }"
