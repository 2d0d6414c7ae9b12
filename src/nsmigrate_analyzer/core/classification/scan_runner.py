from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ...errors import MalformedArtifactError, ScanCancelledError
from ...models.schema import ArtifactCoordinate, ArtifactScan, CodeUnit, NamespaceVerdict, SymbolReference
from ..inspection.archive_reader import inspect_archive
from ..inspection.class_reader import inspect_class_file
from .classifier import classify_symbols, namespace_evidence
from .namespaces import NamespaceMapping
from .source_scanner import scan_source_file

T = TypeVar("T")


@dataclass
class ArtifactResult:
    coordinate: ArtifactCoordinate
    path: str
    verdict: NamespaceVerdict
    evidence: List[SymbolReference] = field(default_factory=list)
    defined_packages: List[str] = field(default_factory=list)
    partial: bool = False
    errors: List[str] = field(default_factory=list)
    entries_scanned: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinate": str(self.coordinate),
            "path": self.path,
            "verdict": self.verdict.value,
            "partial": self.partial,
            "errors": list(self.errors),
            "entries_scanned": self.entries_scanned,
            "defined_packages": list(self.defined_packages),
            "evidence": [s.to_dict() for s in self.evidence],
        }


def inspect_path(path: Path) -> ArtifactScan:
    if str(path).lower().endswith(".class"):
        return inspect_class_file(path)
    return inspect_archive(path)


class ScanRunner:
    """
    Runs inspection and classification per artifact on a bounded thread pool.

    Each work item checks the cancellation flag before it starts; results
    are only returned after every submitted item has finished.
    """

    def __init__(
        self,
        mapping: NamespaceMapping,
        concurrency: int = 4,
        cancel_event: Optional[threading.Event] = None,
        max_file_bytes: Optional[int] = None,
        log: Any | None = None,
    ):
        self.mapping = mapping
        self.concurrency = max(1, int(concurrency))
        self.cancel_event = cancel_event or threading.Event()
        self.max_file_bytes = max_file_bytes
        self.log = log

    def cancel(self) -> None:
        self.cancel_event.set()

    def _check(self) -> None:
        if self.cancel_event.is_set():
            raise ScanCancelledError("scan cancelled")

    def _run(self, items: Sequence[Any], fn: Callable[[Any], T]) -> List[T]:
        self._check()

        def guarded(item: Any) -> T:
            self._check()
            return fn(item)

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = [pool.submit(guarded, item) for item in items]
            wait(futures)
        self._check()
        # result() re-raises anything a worker hit
        return [f.result() for f in futures]

    # --- artifacts ---

    def _scan_artifact(self, job: Tuple[ArtifactCoordinate, Path]) -> ArtifactResult:
        coord, path = job
        try:
            scan = inspect_path(path)
        except MalformedArtifactError as e:
            if self.log:
                self.log.warning(f"Malformed artifact {coord}: {e}")
            return ArtifactResult(coord, str(path), NamespaceVerdict.UNKNOWN, partial=True, errors=[str(e)])
        legacy, migrated = namespace_evidence(scan.symbols, self.mapping)
        return ArtifactResult(
            coordinate=coord,
            path=str(path),
            verdict=classify_symbols(scan.symbols, self.mapping, partial=scan.partial),
            evidence=legacy + migrated,
            defined_packages=scan.defined_packages,
            partial=scan.partial,
            errors=list(scan.errors),
            entries_scanned=scan.entries_scanned,
        )

    def scan_artifacts(self, jobs: Dict[ArtifactCoordinate, Path]) -> Dict[ArtifactCoordinate, ArtifactResult]:
        ordered = sorted(jobs.items())
        results = self._run(ordered, self._scan_artifact)
        if self.log:
            self.log.info(f"Scanned {len(results)} artifacts")
        return {r.coordinate: r for r in results}

    # --- code units ---

    def _scan_source(self, job: Tuple[Path, Optional[ArtifactCoordinate], str]) -> CodeUnit:
        path, module, rel = job
        symbols, err = scan_source_file(path, self.max_file_bytes)
        unit = CodeUnit(path=rel, kind="source", module=module, symbols=symbols)
        if err:
            unit.partial = True
            unit.errors.append(err)
        unit.verdict = classify_symbols(symbols, self.mapping, partial=unit.partial)
        return unit

    def _scan_classes(self, job: Tuple[str, Optional[ArtifactCoordinate], List[Path]]) -> CodeUnit:
        rel, module, files = job
        unit = CodeUnit(path=rel, kind="classes", module=module)
        for f in files:
            self._check()
            try:
                scan = inspect_path(f)
            except MalformedArtifactError as e:
                unit.partial = True
                unit.errors.append(str(e))
                continue
            unit.symbols.extend(scan.symbols)
            unit.errors.extend(scan.errors)
            unit.partial = unit.partial or scan.partial
        unit.verdict = classify_symbols(unit.symbols, self.mapping, partial=unit.partial)
        return unit

    def scan_code_units(
        self,
        sources: Sequence[Tuple[Path, Optional[ArtifactCoordinate], str]],
        class_groups: Sequence[Tuple[str, Optional[ArtifactCoordinate], List[Path]]] = (),
    ) -> List[CodeUnit]:
        units = self._run(sorted(sources, key=lambda s: s[2]), self._scan_source)
        units += self._run(sorted(class_groups, key=lambda g: g[0]), self._scan_classes)
        if self.log:
            self.log.info(f"Scanned {len(units)} code units")
        return sorted(units, key=lambda u: u.path)
