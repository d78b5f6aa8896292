"""
Shared fixtures and stub generation services.
"""

import tempfile
from pathlib import Path

import pytest

from reprogrammer.config.models import LanguageSettings, TranslationConfig

CODE_MARKER = "Code to translate:\n"


class ScriptedService:
    """Generation service stub returning canned responses in order.

    The last response repeats once the script runs out. A ``handler`` gets
    the conversation and returns the response instead.
    """

    def __init__(self, responses=None, handler=None, reachable=True):
        self.responses = list(responses or [])
        self.handler = handler
        self.reachable = reachable
        self.calls = []

    def generate(self, conversation, max_output_tokens):
        self.calls.append(conversation)
        if self.handler is not None:
            return self.handler(conversation)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    def check_connection(self):
        return self.reachable

    def translation_requests(self):
        """Code payloads of every translation request seen so far."""
        return [
            call[-1]["content"].split(CODE_MARKER, 1)[1]
            for call in self.calls
            if CODE_MARKER in call[-1]["content"]
        ]


def echo_translation(conversation):
    """Answer translation requests with the code unchanged; answer 'yes' otherwise."""
    request = conversation[-1]["content"]
    if CODE_MARKER in request:
        return f"<response><code>{request.split(CODE_MARKER, 1)[1]}</code></response>"
    return "<response><code>yes</code></response>"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def java_settings():
    """Language settings for a brace-delimited target."""
    return LanguageSettings(
        target_language="java",
        input_extension=".py",
        output_extension=".java",
        prompt="Translate the following code to Java",
        max_chunk_size=200,
        class_structure_threshold=150,
    )


@pytest.fixture
def translation_config():
    return TranslationConfig()
