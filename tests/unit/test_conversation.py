"""
Unit tests for conversation history and client construction.
"""

import orjson
import pytest

from reprogrammer.config.models import LLMConfig, LLMProvider
from reprogrammer.errors import GenerationServiceError
from reprogrammer.translator.conversation import ConversationHistory
from reprogrammer.translator.llm_client import OllamaClient, OpenAICompatibleClient, create_llm_client


def test_append_returns_new_history():
    history = ConversationHistory(max_length=5)

    updated = history.append("user", "hello")

    assert len(history) == 0
    assert updated.to_messages() == [{"role": "user", "content": "hello"}]
    assert updated.conversation_id == history.conversation_id


def test_bound_evicts_oldest_non_system_message():
    history = ConversationHistory(max_length=3).extend(
        [("system", "rules"), ("user", "u1"), ("assistant", "a1"), ("user", "u2")]
    )

    assert [m.content for m in history.messages] == ["rules", "a1", "u2"]


def test_system_message_goes_last():
    history = ConversationHistory(max_length=1).extend([("system", "rules"), ("system", "more rules")])

    assert [m.content for m in history.messages] == ["more rules"]


def test_invalid_role_is_rejected():
    with pytest.raises(ValueError):
        ConversationHistory().append("tool", "nope")


def test_save_transcript(temp_dir):
    history = ConversationHistory().append("user", "hi").append("assistant", "<code>x</code>")

    path = history.save(temp_dir / "conversations", name="a_java")

    data = orjson.loads(path.read_bytes())
    assert path.name == "a_java.json"
    assert data["id"] == history.conversation_id
    assert data["messages"][1]["content"] == "<code>x</code>"


# =============================================================================
# Client factory
# =============================================================================


def test_hosted_provider_requires_key():
    with pytest.raises(GenerationServiceError, match="API key required"):
        OpenAICompatibleClient(LLMConfig(provider=LLMProvider.OPENAI, api_key=None))


def test_custom_provider_requires_url():
    with pytest.raises(GenerationServiceError, match="api_url"):
        OpenAICompatibleClient(LLMConfig(provider=LLMProvider.CUSTOM))


@pytest.mark.parametrize(
    "provider, expected",
    [
        (LLMProvider.OPENROUTER, OpenAICompatibleClient.OPENROUTER_BASE_URL),
        (LLMProvider.CLAUDE, OpenAICompatibleClient.CLAUDE_BASE_URL),
    ],
)
def test_provider_base_urls(provider, expected):
    client = OpenAICompatibleClient(LLMConfig(provider=provider, api_key="key"))

    assert str(client.client.base_url).rstrip("/") == expected.rstrip("/")


def test_factory_picks_client():
    assert isinstance(create_llm_client(LLMConfig(provider=LLMProvider.OLLAMA)), OllamaClient)
    assert isinstance(
        create_llm_client(LLMConfig(provider=LLMProvider.CUSTOM, api_url="http://localhost:8080/v1")),
        OpenAICompatibleClient,
    )


def test_generate_wraps_api_errors(monkeypatch):
    client = OpenAICompatibleClient(LLMConfig(provider=LLMProvider.OPENAI, api_key="key"))

    def fail(**kwargs):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(client.client.chat.completions, "create", fail)

    with pytest.raises(GenerationServiceError, match="quota exceeded"):
        client.generate([{"role": "user", "content": "hi"}], 10)
    assert client.check_connection() is False
