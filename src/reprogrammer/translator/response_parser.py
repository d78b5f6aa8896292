"""
Extraction of the code payload from tagged generation responses.

Responses are expected in the envelope::

    <response><code>...</code><rationale>...</rationale></response>

but the parser is tolerant: a response cut off mid-output still yields the
code written so far, and a response without any code section yields "".
"""

import html
import re

from reprogrammer.translator.llm_client import strip_markdown_code_blocks

CDATA_OPEN = "<![CDATA["
CDATA_CLOSE = "]]>"

_YES = re.compile(r"^\W*(yes|y|true)\b", re.IGNORECASE)
_NO = re.compile(r"^\W*(no|n|false)\b", re.IGNORECASE)


def unwrap_verbatim(payload: str) -> str:
    """Remove a CDATA wrapper and/or a markdown fence around a payload."""
    start = payload.find(CDATA_OPEN)
    if start != -1 and not payload[:start].strip():
        inner = payload[start + len(CDATA_OPEN):]
        end = inner.rfind(CDATA_CLOSE)
        payload = inner[:end] if end != -1 else inner
    return strip_markdown_code_blocks(payload)


class ResponseParser:
    """Pulls the code section out of a raw response string. Never raises."""

    def __init__(self, opening_tag: str = "<code>", closing_tag: str = "</code>"):
        self.opening_tag = opening_tag
        self.closing_tag = closing_tag
        self._closed = re.compile(
            re.escape(opening_tag) + r"(.*?)" + re.escape(closing_tag), re.DOTALL
        )

    def _raw_section(self, response: str) -> str | None:
        if not isinstance(response, str):
            return None
        match = self._closed.search(response)
        if match:
            return match.group(1)
        start = response.find(self.opening_tag)
        if start == -1:
            return None
        return response[start + len(self.opening_tag):]

    def extract_code(self, response: str) -> str:
        """Return the decoded code payload, or "" when there is none."""
        section = self._raw_section(response)
        if section is None:
            return ""
        return html.unescape(unwrap_verbatim(section))

    def extract_continuation(self, response: str) -> tuple[str, bool]:
        """Parse the answer to a continuation request.

        The service often resumes the code without repeating the opening
        marker, so text before a bare closing marker (or the whole text when
        there are no markers) counts as code.

        Returns:
            Tuple of (code, complete)
        """
        if not isinstance(response, str):
            return "", False
        if self.has_code_section(response):
            return self.extract_code(response), self.is_complete(response)
        end = response.find(self.closing_tag)
        if end != -1:
            return html.unescape(unwrap_verbatim(response[:end])), True
        return html.unescape(unwrap_verbatim(response)), False

    def is_complete(self, response: str) -> bool:
        """True when a closing marker follows the opening marker."""
        if not isinstance(response, str):
            return False
        start = response.find(self.opening_tag)
        if start == -1:
            return False
        return response.find(self.closing_tag, start + len(self.opening_tag)) != -1

    def has_code_section(self, response: str) -> bool:
        return isinstance(response, str) and self.opening_tag in response

    def extract_rationale(self, response: str) -> str:
        if not isinstance(response, str):
            return ""
        start = response.find("<rationale>")
        if start == -1:
            return ""
        body = response[start + len("<rationale>"):]
        end = body.find("</rationale>")
        return html.unescape((body if end == -1 else body[:end]).strip())

    def parse_yes_no(self, response: str) -> bool | None:
        """Interpret a meta answer. Looks inside a code section if present."""
        if not isinstance(response, str):
            return None
        text = self.extract_code(response) if self.has_code_section(response) else response
        text = text.strip()
        if _YES.match(text):
            return True
        if _NO.match(text):
            return False
        return None
