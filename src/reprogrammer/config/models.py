"""
Core configuration and data models for Reprogrammer.

Defines all configuration structures and the records passed between the
pipeline components, using Pydantic for validation.
"""

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# LLM Configuration
# ============================================================================


class LLMProvider(str, Enum):
    """Supported text-generation providers."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    CLAUDE = "claude"
    CUSTOM = "custom"  # Any OpenAI-compatible endpoint (local servers etc.)


class LLMConfig(BaseModel):
    """Configuration for the generation service client."""

    provider: LLMProvider = Field(default=LLMProvider.OPENAI, description="LLM provider")
    host: str = Field(default="http://localhost:11434", description="Ollama server URL (for Ollama)")
    api_key: str | None = Field(default=None, description="API key (for hosted providers)")
    api_url: str | None = Field(
        default=None, description="Base URL override for OpenAI-compatible endpoints"
    )
    model: str = Field(default="gpt-4-turbo", description="Model to use for translation")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    timeout: int = Field(default=500, description="Request timeout in seconds")
    max_tokens: int = Field(default=4096, gt=0, description="Maximum output tokens per request")


# ============================================================================
# Language Settings
# ============================================================================


DEFAULT_BLOCK_START = (
    r"^(?:(?:public|private|protected|internal|abstract|final|static|sealed|partial)\s+)*"
    r"(?:class|interface|enum|struct|record)\b.*"
)


class LanguageSettings(BaseModel):
    """
    Per-run language settings.

    Mirrors the keys of the original ``settings.yaml``: the target language,
    file extensions, chunk budgets, response tags and the block matchers the
    chunk splitter uses to track nesting.
    """

    target_language: str = Field(description="Target language identifier (e.g. 'python', 'java')")
    input_extension: str = Field(description="Extension of source files to translate")
    output_extension: str = Field(description="Extension of translated files")
    prompt: str = Field(description="Free-text translation instruction")
    max_chunk_size: int = Field(default=4000, gt=0, description="Character budget per chunk")
    class_structure_threshold: int = Field(
        default=2000,
        gt=0,
        description="Structural chunks larger than this are translated skeleton-first",
    )
    opening_tag: str = Field(default="<code>", description="Opening marker of the code section")
    closing_tag: str = Field(default="</code>", description="Closing marker of the code section")
    block_start_keyword: str = Field(
        default=DEFAULT_BLOCK_START,
        description="Regex matched against a stripped line that starts a type-like block",
    )
    block_end_keyword: str = Field(
        default="{", description="A block-start line must end with this text"
    )
    block_open_symbol: str = Field(default="{", min_length=1)
    block_close_symbol: str = Field(default="}", min_length=1)
    package_name: str | None = Field(
        default=None, description="Base namespace/package prepended to every output namespace"
    )

    @field_validator("block_start_keyword")
    @classmethod
    def _check_regex(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"block_start_keyword is not a valid regex: {e}")
        return value

    @field_validator("input_extension", "output_extension")
    @classmethod
    def _normalize_extension(cls, value: str) -> str:
        value = value.strip()
        if value and not value.startswith("."):
            value = "." + value
        return value


# ============================================================================
# Translation Configuration
# ============================================================================


class TranslationConfig(BaseModel):
    """Bounds and options of the translation process."""

    max_history: int = Field(default=10, ge=1, description="Max messages kept per file conversation")
    max_continuations: int = Field(
        default=20, ge=1, description="Max continuation requests for one truncated chunk"
    )
    max_redo_attempts: int = Field(
        default=2, ge=0, description="Max 'start over' requests for one chunk"
    )
    max_repair_depth: int = Field(default=3, ge=0, description="Recursion bound of the repair engine")
    max_repair_rounds: int = Field(default=5, ge=0, description="Whole-file repair attempts")
    max_service_retries: int = Field(
        default=3, ge=0, description="File-level retries after a generation service failure"
    )
    retry_backoff_seconds: float = Field(default=2.0, ge=0.0)
    include_meta_context: bool = Field(
        default=False, description="Feed a running summary of translated files into prompts"
    )
    meta_summary_max_chars: int = Field(default=4000, gt=0)
    generate_file_names: bool = Field(
        default=False, description="Ask the service for new type/file names"
    )
    merge_small_files: bool = Field(
        default=False, description="Translate small sibling files in one request"
    )
    small_file_threshold: int = Field(default=800, gt=0)
    max_rewrite_iterations: int = Field(
        default=10, ge=1, description="Hard cap on cross-file rewrite passes"
    )
    log_conversations: bool = Field(default=False, description="Save per-file transcripts")


# ============================================================================
# Project Configuration
# ============================================================================


class ProjectConfig(BaseModel):
    """Source tree and output locations."""

    name: str = Field(default="reprogrammer_project", description="Project name")
    source_root: Path = Field(default=Path("."), description="Root of the tree to translate")
    output_dir: Path = Field(default=Path("./output"), description="Output directory")
    state_dir: Path | None = Field(
        default=None, description="Checkpoint directory (defaults to <output_dir>/.reprogrammer)"
    )

    @property
    def effective_state_dir(self) -> Path:
        return self.state_dir or self.output_dir / ".reprogrammer"


class ReprogrammerConfig(BaseModel):
    """Root configuration model."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    language: LanguageSettings
    llm: LLMConfig = Field(default_factory=LLMConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)


# ============================================================================
# Pipeline Records (used across the system)
# ============================================================================


class SourceUnit(BaseModel):
    """Original text of one file. Never mutated."""

    model_config = ConfigDict(frozen=True)

    path: Path
    text: str
    extension: str


class Chunk(BaseModel):
    """An ordered slice of a SourceUnit's text."""

    model_config = ConfigDict(frozen=True)

    index: int
    text: str
    is_structural_block: bool = False


class SyntaxIssue(BaseModel):
    """A single syntax error reported by a target-language parser."""

    model_config = ConfigDict(frozen=True)

    message: str
    line_number: int = Field(default=-1, description="1-based line, -1 if unknown")

    def __str__(self) -> str:
        if self.line_number > 0:
            return f"Line {self.line_number}: {self.message}"
        return self.message


class ParseResult(BaseModel):
    """Output of a target-language parser adapter."""

    success: bool
    errors: list[SyntaxIssue] = Field(default_factory=list)


class SymbolEntry(BaseModel):
    """Mapping of a file's primary type from its original to its new name."""

    model_config = ConfigDict(frozen=True)

    original_name: str
    new_name: str
    namespace: str = ""
    source_file_path: str
    output_path: str

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.new_name}" if self.namespace else self.new_name


class FileOutcome(str, Enum):
    """User-visible outcome of one file."""

    TRANSLATED_CLEAN = "translated_clean"
    TRANSLATED_FLAGGED = "translated_flagged"
    FAILED = "failed"


class TranslatedFile(BaseModel):
    """Result of translating one source file."""

    source_path: str
    output_path: str
    content: str = ""
    outcome: FileOutcome
    errors: list[SyntaxIssue] = Field(default_factory=list)
    failed_chunks: list[int] = Field(default_factory=list)
    repair_exhausted: bool = False
    message: str | None = None


class ProjectResult(BaseModel):
    """Result of a whole-project run."""

    clean: int = 0
    flagged: int = 0
    failed: int = 0
    failed_paths: list[str] = Field(default_factory=list)
    flagged_paths: list[str] = Field(default_factory=list)
    files: list[TranslatedFile] = Field(default_factory=list)
    rewrite_iterations: int = 0
    rewrite_converged: bool = True
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.clean + self.flagged + self.failed

    def add(self, translated: TranslatedFile) -> None:
        """Count a file outcome."""
        self.files.append(translated)
        if translated.outcome == FileOutcome.TRANSLATED_CLEAN:
            self.clean += 1
        elif translated.outcome == FileOutcome.TRANSLATED_FLAGGED:
            self.flagged += 1
            self.flagged_paths.append(translated.source_path)
        else:
            self.failed += 1
            self.failed_paths.append(translated.source_path)
