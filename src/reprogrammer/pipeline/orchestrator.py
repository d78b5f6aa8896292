"""
Pipeline orchestrator.

Sequences the per-file work (split, translate chunks, reassemble, verify and
repair) and the project-wide work (checkpointing, indexing, cross-file
rewrite, final layout). It is the only component that knows about the
directory layout and the persisted progress.
"""

import logging
import re
import time
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from reprogrammer.chunking.splitter import ChunkSplitter
from reprogrammer.config.models import (
    Chunk,
    FileOutcome,
    ProjectResult,
    ReprogrammerConfig,
    SyntaxIssue,
    TranslatedFile,
)
from reprogrammer.errors import (
    GenerationServiceError,
    IncompleteTranslation,
    RepairBudgetExhausted,
    RunCancelled,
)
from reprogrammer.languages.base.plugin import LanguagePlugin
from reprogrammer.languages.registry import get_plugin
from reprogrammer.pipeline.events import EventChannel, EventKind, RunControl
from reprogrammer.state.checkpoint import CheckpointStore, ProjectState
from reprogrammer.symbols.index import SymbolIndexer
from reprogrammer.symbols.rewriter import CrossFileRewriter
from reprogrammer.translator.conversation import ConversationHistory
from reprogrammer.translator.llm_client import GenerationService
from reprogrammer.translator.session import TranslationSession
from reprogrammer.verifier.repair import RecursiveRepairEngine
from reprogrammer.verifier.syntax_verifier import SyntaxVerifier

logger = logging.getLogger(__name__)

FILE_MARKER = "@@FILE {path}@@"
_FILE_MARKER_LINE = re.compile(r"^[ \t]*@@FILE (?P<path>.+?)@@[ \t]*(?:\r?\n|\Z)", re.MULTILINE)

REPAIR_QUESTION = (
    "The translated code below fails to parse with these errors. "
    "Do these errors need fixing (are they real syntax errors in the code)?"
)
SKELETON_NOTE = (
    "This is the outline of a type. Lines of the form @@BODY_n@@ stand for member "
    "bodies translated separately: keep each of them unchanged on its own line."
)
MERGE_NOTE = (
    "Several files follow, each introduced by a line @@FILE path@@. Translate every "
    "file and keep each marker line unchanged before its translation."
)


def iter_source_files(root: Path, extension: str) -> Iterator[tuple[str, str]]:
    """
    Yield ``(relative_path, content)`` for every file with ``extension``.

    Paths use forward slashes and come in sorted order.
    """
    root = Path(root)
    if not extension.startswith("."):
        extension = "." + extension
    paths = sorted(p for p in root.rglob(f"*{extension}") if p.is_file())
    for path in paths:
        relative = path.relative_to(root).as_posix()
        yield relative, path.read_text(encoding="utf-8", errors="replace")


def merge_files(files: list[tuple[str, str]]) -> str:
    """Join files into one request text separated by marker lines."""
    parts = []
    for path, content in files:
        if content and not content.endswith("\n"):
            content += "\n"
        parts.append(FILE_MARKER.format(path=path) + "\n" + content)
    return "".join(parts)


def split_merged_output(code: str, paths: list[str]) -> list[tuple[str, str]] | None:
    """
    Split a merged translation back into files.

    Returns:
        ``[(path, content), ...]`` in the order of ``paths``, or None when
        the markers in ``code`` do not match ``paths`` exactly
    """
    matches = list(_FILE_MARKER_LINE.finditer(code))
    if [m.group("path").strip() for m in matches] != list(paths):
        return None
    if not matches or code[: matches[0].start()].strip():
        return None

    result = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(code)
        result.append((paths[i], code[match.end():end]))
    return result


class PipelineOrchestrator:
    """Runs translations of single files and whole projects."""

    def __init__(
        self,
        config: ReprogrammerConfig,
        service: GenerationService,
        plugin: LanguagePlugin | None = None,
        events: EventChannel | None = None,
        control: RunControl | None = None,
        store: CheckpointStore | None = None,
    ):
        self.config = config
        self.settings = config.language
        self.options = config.translation
        self.service = service
        self.plugin = plugin or get_plugin(self.settings.target_language, self.settings)
        self.events = events or EventChannel()
        self.control = control or RunControl()
        self.store = store or CheckpointStore(config.project.effective_state_dir)
        self.output_dir = Path(config.project.output_dir)

        self.splitter = ChunkSplitter(self.settings)
        self.session = TranslationSession(
            service, self.settings, self.options, max_output_tokens=config.llm.max_tokens
        )
        self.verifier = SyntaxVerifier(self.plugin)
        self.state: ProjectState | None = None
        self._sleep = time.sleep

    # =========================================================================
    # Control
    # =========================================================================

    def check_connection(self) -> None:
        """
        Probe the generation service.

        Raises:
            GenerationServiceError: If the service cannot be reached
        """
        try:
            ok = self.service.check_connection()
        except GenerationServiceError:
            raise
        except Exception as e:
            raise GenerationServiceError(f"Connection check failed: {e}") from e
        if not ok:
            raise GenerationServiceError("Generation service is not reachable")
        logger.info("Generation service is reachable")

    def _poll_control(self) -> None:
        """Block while paused; raise RunCancelled once cancel is requested."""
        if self.control.paused and not self.control.cancelled:
            self.events.emit(EventKind.PAUSED, "Paused")
            self.control.wait_if_paused()
            if not self.control.cancelled:
                self.events.emit(EventKind.RESUMED, "Resumed")
        if self.control.cancelled:
            raise RunCancelled("Cancelled by request")

    def provisional_output_path(self, source_path: str) -> str:
        return PurePosixPath(source_path).with_suffix(self.settings.output_extension).as_posix()

    # =========================================================================
    # Single File
    # =========================================================================

    def translate_file(self, path: str | Path, content: str, meta_context: str = "") -> TranslatedFile:
        """
        Translate one file. Never raises for per-file problems.

        Generation service failures are retried for the whole file with a
        linear backoff before the file is marked failed.

        Raises:
            RunCancelled: If cancellation was requested between chunks
        """
        source_path = PurePosixPath(path).as_posix()
        output_path = self.provisional_output_path(source_path)
        retries = self.options.max_service_retries

        attempt = 0
        while True:
            try:
                return self._translate_file_once(source_path, output_path, content, meta_context)
            except GenerationServiceError as e:
                attempt += 1
                if attempt > retries:
                    logger.error(f"Giving up on {source_path}: {e}")
                    return TranslatedFile(
                        source_path=source_path,
                        output_path=output_path,
                        outcome=FileOutcome.FAILED,
                        message=str(e),
                    )
                delay = self.options.retry_backoff_seconds * attempt
                logger.warning(
                    f"Service error on {source_path} (attempt {attempt}/{retries + 1}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                self._sleep(delay)

    def _translate_file_once(
        self, source_path: str, output_path: str, content: str, meta_context: str
    ) -> TranslatedFile:
        history = self.session.new_history()
        chunks = self.splitter.split(content)
        context = self._meta_context(meta_context)
        pieces: list[str] = []
        failed_chunks: list[int] = []

        for chunk in chunks:
            self._poll_control()
            try:
                if self.splitter.needs_skeleton(chunk):
                    code, history, complete = self._translate_skeleton(chunk, context, history)
                    if not complete:
                        failed_chunks.append(chunk.index)
                else:
                    code, history = self.session.translate(
                        self.settings.prompt, chunk.text, context, history
                    )
            except IncompleteTranslation as e:
                logger.warning(f"Chunk {chunk.index} of {source_path} failed: {e}")
                failed_chunks.append(chunk.index)
                code = e.partial_code

            pieces.append(_with_ending_of(code, chunk.text))
            self.events.emit(
                EventKind.CHUNK_TRANSLATED,
                f"Chunk {chunk.index + 1}/{len(chunks)}",
                path=source_path,
                current=chunk.index + 1,
                total=len(chunks),
            )

        return self._finalize(source_path, output_path, content, "".join(pieces), failed_chunks, history)

    def _translate_skeleton(
        self, chunk: Chunk, context: str, history: ConversationHistory
    ) -> tuple[str, ConversationHistory, bool]:
        """Translate a large type outline first, then each member body."""
        layout = self.splitter.extract_skeleton(chunk.text)
        logger.debug(f"Chunk {chunk.index}: skeleton with {len(layout.bodies)} member bodies")
        complete = True

        prompt = f"{self.settings.prompt}\n\n{SKELETON_NOTE}"
        try:
            skeleton, history = self.session.translate(prompt, layout.skeleton, context, history)
        except IncompleteTranslation as e:
            skeleton, complete = e.partial_code, False

        body_context = f"{context}\n\nThe member belongs to:\n{layout.skeleton}".strip()
        bodies = []
        for body in layout.bodies:
            self._poll_control()
            try:
                translated, history = self.session.translate(
                    self.settings.prompt, body, body_context, history
                )
            except IncompleteTranslation as e:
                translated, complete = e.partial_code, False
            bodies.append(_with_ending_of(translated, body))

        return layout.reassemble(skeleton, bodies), history, complete

    def _meta_context(self, meta_context: str) -> str:
        if meta_context:
            return meta_context
        if self.options.include_meta_context and self.state and self.state.accumulated_meta_summary:
            return "Already translated files:\n" + self.state.accumulated_meta_summary
        return ""

    def _finalize(
        self,
        source_path: str,
        output_path: str,
        content: str,
        code: str,
        failed_chunks: list[int],
        history: ConversationHistory,
    ) -> TranslatedFile:
        """Verify and repair assembled code and decide the file outcome."""
        if content.strip() and not code.strip():
            return TranslatedFile(
                source_path=source_path,
                output_path=output_path,
                outcome=FileOutcome.FAILED,
                failed_chunks=failed_chunks,
                message="No code produced",
            )

        code, errors, reason = self._verify_and_repair(source_path, code, history)
        flagged = bool(errors or failed_chunks)
        message = reason
        if failed_chunks and not message:
            message = f"{len(failed_chunks)} chunk(s) incomplete"

        self._save_transcript(source_path, history)
        return TranslatedFile(
            source_path=source_path,
            output_path=output_path,
            content=code,
            outcome=FileOutcome.TRANSLATED_FLAGGED if flagged else FileOutcome.TRANSLATED_CLEAN,
            errors=errors,
            failed_chunks=failed_chunks,
            repair_exhausted=bool(errors),
            message=message,
        )

    def _verify_and_repair(
        self, source_path: str, code: str, history: ConversationHistory
    ) -> tuple[str, list[SyntaxIssue], str | None]:
        """
        Outer repair loop around the recursive repair engine.

        Returns:
            Tuple of (code, remaining_errors, reason_when_errors_remain)
        """
        errors = self.verifier.verify(code)
        rounds = 0
        try:
            while errors:
                if rounds >= self.options.max_repair_rounds:
                    raise RepairBudgetExhausted(code, errors)
                self._poll_control()

                listing = "\n".join(str(e) for e in errors)
                if not self.session.ask_yes_no(REPAIR_QUESTION, f"Errors:\n{listing}\n\nCode:\n{code}", history):
                    raise RepairBudgetExhausted(
                        code, errors, reason="Remaining errors judged spurious by the service"
                    )

                engine = RecursiveRepairEngine(
                    self.session, self.verifier, max_depth=self.options.max_repair_depth, history=history
                )
                code = engine.repair(code, errors)
                errors = self.verifier.verify(code)
                rounds += 1
                self.events.emit(
                    EventKind.REPAIR_ROUND,
                    f"Repair round {rounds}: {len(errors)} error(s) left",
                    path=source_path,
                    current=rounds,
                    total=self.options.max_repair_rounds,
                )
        except RepairBudgetExhausted as e:
            logger.warning(f"{source_path}: {e.reason}")
            return e.code, e.errors, e.reason

        return code, [], None

    def _save_transcript(self, source_path: str, history: ConversationHistory) -> None:
        if not self.options.log_conversations:
            return
        name = re.sub(r"[^\w.-]", "_", source_path)
        history.save(self.store.state_dir / "conversations", name=name)

    # =========================================================================
    # Project
    # =========================================================================

    def _new_state(self, total: int) -> ProjectState:
        return ProjectState(
            root_directory=str(self.config.project.source_root),
            output_directory=str(self.output_dir),
            total_files=total,
        )

    def run_project(
        self, files: Iterable[tuple[str, str]], state: ProjectState | None = None
    ) -> ProjectResult:
        """
        Translate a stream of ``(relative_path, content)`` pairs.

        Files already completed in ``state`` are skipped. After the per-file
        pass, every completed file is indexed and rewritten for cross-file
        consistency and written to its final location.

        Raises:
            GenerationServiceError: If the connectivity probe fails
        """
        files = [(PurePosixPath(p).as_posix(), c) for p, c in files]
        self.check_connection()

        self.state = state or self._new_state(len(files))
        self.state.total_files = max(self.state.total_files, len(files))
        self.output_dir = Path(self.state.output_directory)
        result = ProjectResult()

        pending = [(p, c) for p, c in files if not self.state.is_completed(p)]
        done = len(files) - len(pending)
        logger.info(f"{len(pending)} file(s) to translate, {done} already done")
        self.events.emit(EventKind.RUN_STARTED, f"Translating {len(pending)} file(s)", current=done, total=len(files))

        try:
            for group in self._plan(pending):
                self._poll_control()
                for translated in self._translate_group(group):
                    done += 1
                    self._record(translated, result, done, len(files))
        except RunCancelled:
            logger.info("Run cancelled; progress is saved in the checkpoint")
            result.cancelled = True
            self.events.emit(EventKind.CANCELLED, "Cancelled", current=done, total=len(files))

        if not result.cancelled:
            self._cross_file_pass(result)

        self.store.save(self.state)
        self.events.emit(
            EventKind.RUN_FINISHED,
            f"{result.clean} clean, {result.flagged} flagged, {result.failed} failed",
            current=done,
            total=len(files),
        )
        return result

    def resume(
        self,
        checkpoint: Path | str | ProjectState,
        files: Iterable[tuple[str, str]] | None = None,
    ) -> ProjectResult:
        """
        Continue an interrupted run.

        Raises:
            CheckpointVersionMismatch: If the checkpoint cannot be resumed
        """
        state = checkpoint if isinstance(checkpoint, ProjectState) else self.store.load(Path(checkpoint))
        if files is None:
            files = iter_source_files(Path(state.root_directory), self.settings.input_extension)
        logger.info(f"Resuming {state.session_id}: {state.files_processed_count} file(s) done")
        return self.run_project(files, state=state)

    def _record(self, translated: TranslatedFile, result: ProjectResult, done: int, total: int) -> None:
        """Write a provisional output, update the state and checkpoint it."""
        if translated.outcome != FileOutcome.FAILED:
            target = self.output_dir / translated.output_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(translated.content, encoding="utf-8")
            self._update_meta_summary(translated)

        result.add(translated)
        self.state.record_file(translated.source_path, translated.output_path, translated.outcome)
        self.store.save(self.state)

        logger.info(f"{translated.source_path}: {translated.outcome.value}")
        self.events.emit(
            EventKind.FILE_FINISHED,
            translated.message or translated.outcome.value,
            path=translated.source_path,
            current=done,
            total=total,
            outcome=translated.outcome,
        )

    def _update_meta_summary(self, translated: TranslatedFile) -> None:
        if not self.options.include_meta_context:
            return
        try:
            summary = self.session.summarize(translated.output_path, translated.content)
        except GenerationServiceError as e:
            logger.warning(f"Could not summarize {translated.source_path}: {e}")
            return
        self.state.append_meta_summary(
            f"{translated.output_path}: {summary}", self.options.meta_summary_max_chars
        )

    # =========================================================================
    # Small File Merging
    # =========================================================================

    def _plan(self, files: list[tuple[str, str]]) -> list[list[tuple[str, str]]]:
        """Group consecutive small files of one directory when merging is on."""
        if not self.options.merge_small_files:
            return [[f] for f in files]

        groups: list[list[tuple[str, str]]] = []
        current: list[tuple[str, str]] = []
        size = 0
        for path, content in files:
            small = len(content) < self.options.small_file_threshold
            same_dir = current and PurePosixPath(current[0][0]).parent == PurePosixPath(path).parent
            if small and same_dir and size + len(content) <= self.settings.max_chunk_size:
                current.append((path, content))
                size += len(content)
                continue
            if current:
                groups.append(current)
            current, size = [(path, content)], len(content)
            if not small:
                groups.append(current)
                current, size = [], 0
        if current:
            groups.append(current)
        return groups

    def _translate_group(self, group: list[tuple[str, str]]) -> list[TranslatedFile]:
        if len(group) == 1:
            path, content = group[0]
            self.events.emit(EventKind.FILE_STARTED, f"Translating {path}", path=path)
            return [self.translate_file(path, content)]

        paths = [path for path, _ in group]
        self.events.emit(EventKind.FILE_STARTED, f"Translating {len(group)} small files together", path=paths[0])
        history = self.session.new_history()
        parts = None
        try:
            code, history = self.session.translate(
                f"{self.settings.prompt}\n\n{MERGE_NOTE}", merge_files(group), self._meta_context(""), history
            )
            parts = split_merged_output(code, paths)
        except (IncompleteTranslation, GenerationServiceError) as e:
            logger.info(f"Merged translation failed ({e}), translating one by one")

        if parts is None:
            logger.info(f"Falling back to per-file translation for {len(group)} files")
            return [self.translate_file(path, content) for path, content in group]

        originals = dict(group)
        return [
            self._finalize(path, self.provisional_output_path(path), originals[path], code, [], history)
            for path, code in parts
        ]

    # =========================================================================
    # Cross-File Pass
    # =========================================================================

    def _cross_file_pass(self, result: ProjectResult) -> None:
        """Index every completed file, rewrite references and move files to their final paths."""
        contents: dict[str, str] = {}
        for source_path in self.state.completed_paths():
            relative = self.state.file_name_map.get(source_path)
            location = self.output_dir / relative if relative else None
            if location is None or not location.exists():
                logger.warning(f"Output of {source_path} is missing; left out of the cross-file pass")
                continue
            contents[source_path] = location.read_text(encoding="utf-8")

        if not contents:
            return

        indexer = SymbolIndexer(
            self.plugin,
            self.session,
            generate_names=self.options.generate_file_names,
            package_name=self.settings.package_name,
        )
        index = indexer.build(contents)
        report = CrossFileRewriter(index, self.plugin, self.options.max_rewrite_iterations).rewrite(contents)
        result.rewrite_iterations = report.iterations
        result.rewrite_converged = report.converged

        final_paths = {index.by_source(p).output_path for p in report.files}
        by_source = {f.source_path: f for f in result.files}
        for source_path, content in report.files.items():
            entry = index.by_source(source_path)
            previous = self.state.file_name_map.get(source_path)

            target = self.output_dir / entry.output_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            if previous and previous != entry.output_path and previous not in final_paths:
                (self.output_dir / previous).unlink(missing_ok=True)

            self.state.file_name_map[source_path] = entry.output_path
            translated = by_source.get(source_path)
            if translated is not None:
                translated.output_path = entry.output_path
                translated.content = content

        self.events.emit(
            EventKind.REWRITE_FINISHED,
            f"Cross-file rewrite: {report.iterations} pass(es), {len(report.modified)} file(s) changed",
            current=report.iterations,
            total=self.options.max_rewrite_iterations,
        )


def _with_ending_of(code: str, original: str) -> str:
    """Keep chunk boundaries on line breaks when the original had one."""
    if original.endswith("\n") and code and not code.endswith("\n"):
        return code + "\n"
    return code
