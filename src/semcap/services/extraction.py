"""
Concurrent multi-file extraction workflow.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..chunking import ChunkExtractor, ChunkTree
from ..chunking.extractor import guess_language
from ..exceptions import ExtractionCancelled, PartialExtractionError, SemcapError
from ..logger import get_logger
from ..patterns.registry import PatternRegistry, default_registry
from ..settings import settings

log = get_logger(__name__)


@dataclass
class ExtractionCallbacks:
    file: Optional[Callable[[Path], None]] = None
    stage: Optional[Callable[[str], None]] = None


@dataclass
class FileExtraction:
    path: Path
    language: Optional[str]
    tree: ChunkTree
    error: Optional[SemcapError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExtractionReport:
    files: List[FileExtraction] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return sum(len(result.tree) for result in self.files)

    @property
    def failed(self) -> List[FileExtraction]:
        return [result for result in self.files if not result.ok]


class ExtractionService:
    """Runs per-file extraction on a thread pool sharing one read-only registry.

    Each worker thread owns its own ``ChunkExtractor`` (and therefore its own
    parsers) unless an explicit extractor is supplied, in which case it must
    be safe to call from several threads.
    """

    def __init__(
        self,
        extractor: Optional[ChunkExtractor] = None,
        registry: Optional[PatternRegistry] = None,
        max_workers: Optional[int] = None,
        file_timeout: Optional[float] = None,
    ) -> None:
        self._extractor = extractor
        if registry is not None:
            self.registry = registry
        elif extractor is not None:
            self.registry = extractor.registry
        else:
            self.registry = default_registry()
        self.max_workers = max(1, max_workers or settings.max_workers)
        # 0 disables the per-file deadline
        self.file_timeout = settings.file_timeout if file_timeout is None else (file_timeout or None)
        self._local = threading.local()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop every file still being matched; finished results are kept.

        The flag stays set until the next ``extract_files`` call starts a new
        batch, so direct ``extract_path`` calls made after cancelling are
        cancelled too.
        """
        self._cancelled.set()

    def _worker_extractor(self) -> ChunkExtractor:
        if self._extractor is not None:
            return self._extractor
        extractor = getattr(self._local, "extractor", None)
        if extractor is None:
            extractor = ChunkExtractor(registry=self.registry)
            self._local.extractor = extractor
        return extractor

    def _deadline_check(self) -> Callable[[], bool]:
        timeout = self.file_timeout
        deadline = time.monotonic() + timeout if timeout else None
        cancelled = self._cancelled

        def should_cancel() -> bool:
            if cancelled.is_set():
                return True
            return deadline is not None and time.monotonic() > deadline

        return should_cancel

    def extract_path(self, path: Path, language: Optional[str] = None) -> FileExtraction:
        """Extract one file, converting per-file failures into a result entry."""
        language = language or guess_language(path)
        try:
            tree = self._worker_extractor().extract_file(
                path, language=language, should_cancel=self._deadline_check()
            )
        except ExtractionCancelled as exc:
            log.warning("file_extraction_cancelled", file=str(path), error=str(exc))
            return FileExtraction(path, language, ChunkTree(language or "", errors=(exc,)), exc)
        except OSError as exc:
            log.warning("file_read_failed", file=str(path), error=str(exc))
            error = SemcapError(f"could not read {path}: {exc}")
            return FileExtraction(path, language, ChunkTree(language or "", errors=(error,)), error)
        partial = next((error for error in tree.errors if isinstance(error, PartialExtractionError)), None)
        return FileExtraction(path, language, tree, partial)

    def extract_files(
        self,
        paths: Sequence[Path],
        callbacks: Optional[ExtractionCallbacks] = None,
    ) -> ExtractionReport:
        """Extract every path concurrently; results keep the input order."""
        cb = callbacks or ExtractionCallbacks()
        self._cancelled.clear()
        if cb.stage:
            cb.stage("extraction_started")

        def run(path: Path) -> FileExtraction:
            result = self.extract_path(path)
            if cb.file:
                cb.file(path)
            return result

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(run, paths))

        report = ExtractionReport(files=results)
        log.info(
            "extraction_completed",
            files=len(results),
            chunks=report.chunk_count,
            failed=len(report.failed),
        )
        if cb.stage:
            cb.stage("extraction_completed")
        return report
