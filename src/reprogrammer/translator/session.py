"""
Translation session: one request/response exchange per chunk, plus the
continuation protocol that stitches truncated responses back together.

The conversation history is passed in and handed back explicitly; the
session itself holds no per-file state.
"""

import logging
import re

from reprogrammer.config.models import LanguageSettings, TranslationConfig
from reprogrammer.errors import GenerationServiceError, IncompleteTranslation
from reprogrammer.translator.conversation import ConversationHistory
from reprogrammer.translator.llm_client import GenerationService
from reprogrammer.translator.response_parser import ResponseParser

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def truncate_at_last_balanced_close(code: str, open_symbol: str, close_symbol: str) -> str:
    """Cut ``code`` right after its last close symbol that matches an open one.

    Trailing whitespace up to the end of that line is kept. Code without
    any matched close symbol is returned unchanged.
    """
    depth = 0
    cut = -1
    i = 0
    while i < len(code):
        if code.startswith(open_symbol, i):
            depth += 1
            i += len(open_symbol)
        elif code.startswith(close_symbol, i):
            if depth > 0:
                depth -= 1
                cut = i + len(close_symbol)
            i += len(close_symbol)
        else:
            i += 1
    if cut == -1:
        return code
    newline = code.find("\n", cut)
    if newline != -1 and not code[cut:newline].strip():
        return code[: newline + 1]
    if newline == -1 and not code[cut:].strip():
        return code
    return code[:cut]


class TranslationSession:
    """Wraps a generation service with the tagged envelope protocol."""

    def __init__(
        self,
        service: GenerationService,
        settings: LanguageSettings,
        translation: TranslationConfig | None = None,
        max_output_tokens: int = 4096,
    ):
        self.service = service
        self.settings = settings
        self.translation = translation or TranslationConfig()
        self.max_output_tokens = max_output_tokens
        self.parser = ResponseParser(settings.opening_tag, settings.closing_tag)

    # ========================================================================
    # Prompts
    # ========================================================================

    def system_prompt(self) -> str:
        open_tag, close_tag = self.settings.opening_tag, self.settings.closing_tag
        return (
            f"You are an expert software engineer translating source code to "
            f"{self.settings.target_language}.\n"
            f"Always answer in this exact format:\n"
            f"<response>{open_tag}TRANSLATED CODE{close_tag}"
            f"<rationale>optional short notes</rationale></response>\n"
            f"Put only {self.settings.target_language} code inside {open_tag}...{close_tag}. "
            f"Do not use markdown code fences. Keep any @@BODY_n@@ or @@FILE path@@ "
            f"marker lines exactly as they appear."
        )

    def new_history(self) -> ConversationHistory:
        """Start an empty per-file history seeded with the system prompt."""
        history = ConversationHistory(max_length=max(self.translation.max_history, 1))
        return history.append("system", self.system_prompt())

    def _build_request(self, prompt: str, chunk_text: str, original_context: str) -> str:
        parts = [prompt.strip()]
        if original_context:
            parts.append(f"Context (for reference only, do not translate it):\n{original_context}")
        parts.append(f"Code to translate:\n{chunk_text}")
        return "\n\n".join(parts)

    def _continuation_request(self, accumulated: str) -> str:
        return (
            "Your previous answer was cut off. This is the code produced so far:\n"
            f"{self.settings.opening_tag}{accumulated}\n\n"
            "Continue the translation immediately after the last character above. "
            "Do not repeat anything already written. "
            f"Finish with {self.settings.closing_tag}."
        )

    def _redo_request(self, request: str) -> str:
        return (
            "Your previous attempt was incomplete. Discard all partial progress and "
            "start over, translating the whole code again in a single complete "
            "answer.\n\n" + request
        )

    # ========================================================================
    # Protocol
    # ========================================================================

    def _generate(self, messages: list[dict[str, str]]) -> str:
        try:
            return self.service.generate(messages, self.max_output_tokens)
        except GenerationServiceError:
            raise
        except Exception as e:
            raise GenerationServiceError(f"Generation service failed: {e}") from e

    def _run_protocol(self, base: list[dict[str, str]], request: str) -> tuple[str, bool]:
        """Send one request and follow continuations until closed or stuck.

        Returns:
            Tuple of (accumulated_code, complete)
        """
        messages = base + [{"role": "user", "content": request}]
        response = self._generate(messages)
        if not self.parser.has_code_section(response):
            logger.debug("Response carried no code section")
            return "", False

        accumulated = self.parser.extract_code(response)
        if self.parser.is_complete(response):
            return accumulated, True

        for continuation in range(1, self.translation.max_continuations + 1):
            accumulated = truncate_at_last_balanced_close(
                accumulated, self.settings.block_open_symbol, self.settings.block_close_symbol
            )
            logger.debug(f"Continuation {continuation} after {len(accumulated)} characters")
            follow_up = messages + [
                {"role": "assistant", "content": self.settings.opening_tag + accumulated},
                {"role": "user", "content": self._continuation_request(accumulated)},
            ]
            fragment, complete = self.parser.extract_continuation(self._generate(follow_up))
            if complete:
                return accumulated + fragment, True
            if not fragment.strip():
                logger.debug("Continuation made no progress")
                return accumulated, False
            accumulated += fragment

        logger.warning(f"Reached {self.translation.max_continuations} continuations without a closed response")
        return accumulated, False

    def translate(
        self,
        prompt: str,
        chunk_text: str,
        original_context: str = "",
        history: ConversationHistory | None = None,
    ) -> tuple[str, ConversationHistory]:
        """
        Translate one chunk to completion.

        Args:
            prompt: Free-text instruction
            chunk_text: The code to translate
            original_context: Optional reference material sent alongside
            history: Conversation so far (a fresh one is started when None)

        Returns:
            Tuple of (translated_code, updated_history)

        Raises:
            IncompleteTranslation: no complete answer within the redo budget
            GenerationServiceError: the service failed; not retried here
        """
        if history is None:
            history = self.new_history()
        if not chunk_text.strip():
            return chunk_text, history

        request = self._build_request(prompt, chunk_text, original_context)
        base = history.to_messages()
        partial = ""

        for attempt in range(self.translation.max_redo_attempts + 1):
            message = request if attempt == 0 else self._redo_request(request)
            code, complete = self._run_protocol(base, message)
            if complete:
                answer = f"{self.settings.opening_tag}{code}{self.settings.closing_tag}"
                return code, history.append("user", request).append("assistant", answer)
            partial = code or partial
            logger.info(
                f"Incomplete translation (attempt {attempt + 1}/"
                f"{self.translation.max_redo_attempts + 1}), asking to start over"
            )

        raise IncompleteTranslation(
            f"No complete translation after {self.translation.max_redo_attempts + 1} attempt(s)",
            partial_code=partial,
        )

    # ========================================================================
    # Meta questions
    # ========================================================================

    def ask_yes_no(
        self, question: str, context: str, history: ConversationHistory | None = None
    ) -> bool:
        """Ask a yes/no question about ``context``. Unclear answers count as yes."""
        base = (history or self.new_history()).to_messages()
        request = (
            f"{question}\n\n{context}\n\n"
            f"Answer with a single word, yes or no, inside "
            f"{self.settings.opening_tag}{self.settings.closing_tag}."
        )
        answer = self.parser.parse_yes_no(self._generate(base + [{"role": "user", "content": request}]))
        if answer is None:
            logger.debug("Unclear yes/no answer, assuming yes")
            return True
        return answer

    def suggest_name(self, original_name: str, code: str) -> str:
        """Ask for an idiomatic name of a type. Falls back to the original."""
        request = (
            f"Suggest an idiomatic {self.settings.target_language} name for the main type "
            f"currently called '{original_name}' in the code below. Reply with the bare "
            f"identifier inside {self.settings.opening_tag}{self.settings.closing_tag}.\n\n{code}"
        )
        response = self._generate(self.new_history().to_messages() + [{"role": "user", "content": request}])
        candidate = self.parser.extract_code(response).strip() or response.strip()
        if _IDENTIFIER.match(candidate):
            return candidate
        logger.debug(f"Rejected suggested name {candidate[:40]!r} for {original_name}")
        return original_name

    def summarize(self, path: str, code: str) -> str:
        """Short description of the public API of a translated file."""
        request = (
            f"Summarize the public types and functions of {path} in a few lines, "
            f"inside {self.settings.opening_tag}{self.settings.closing_tag}.\n\n{code}"
        )
        response = self._generate(self.new_history().to_messages() + [{"role": "user", "content": request}])
        return (self.parser.extract_code(response) or response).strip()
