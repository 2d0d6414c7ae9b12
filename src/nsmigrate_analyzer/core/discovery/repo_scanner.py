import os
import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from ..classification.source_scanner import source_kind
from ..inspection.archive_reader import is_archive
from ..manifest.registry import detect_format


@dataclass
class ScanConfig:
    include_globs: List[str]
    exclude_globs: List[str]
    skip_extensions: Set[str]
    follow_symlinks: bool


@dataclass
class RepoInventory:
    root: Path
    files: List[Dict] = field(default_factory=list)
    manifests: List[Path] = field(default_factory=list)
    # name-version.pom descriptors next to archives, not modules
    published_poms: List[Path] = field(default_factory=list)
    archives: List[Path] = field(default_factory=list)
    sources: List[Path] = field(default_factory=list)
    # module directory (relative, "" for root) -> loose .class files under it
    class_files: Dict[str, List[Path]] = field(default_factory=dict)

    def module_dirs(self) -> List[str]:
        return sorted({self.rel(m.parent) for m in self.manifests})

    def rel(self, p: Path) -> str:
        r = p.relative_to(self.root).as_posix()
        return "" if r == "." else r

    def owning_module_dir(self, p: Path) -> Optional[str]:
        """Nearest module directory above a file, None when the file sits outside every module."""
        rel = self.rel(p)
        best: Optional[str] = None
        for d in self.module_dirs():
            if d == "" or rel == d or rel.startswith(d + "/"):
                if best is None or len(d) > len(best):
                    best = d
        return best


def _match_any(path: str, patterns: List[str]) -> bool:
    for pat in patterns:
        if fnmatch.fnmatch(path, pat) or fnmatch.fnmatch(os.path.basename(path), pat):
            return True
    return False


def iter_files(root: str, cfg: ScanConfig) -> Iterator[str]:
    root_path = Path(root)
    for dirpath, dirnames, filenames in os.walk(root_path, followlinks=cfg.follow_symlinks):
        rel_dir = os.path.relpath(dirpath, root_path)
        rel_dir = "" if rel_dir == "." else rel_dir

        # prune excluded directories
        pruned = []
        for d in list(dirnames):
            rel = os.path.join(rel_dir, d).replace("\\", "/")
            if _match_any(rel + "/", cfg.exclude_globs):
                pruned.append(d)
        for d in pruned:
            dirnames.remove(d)
        dirnames.sort()

        for f in sorted(filenames):
            full = os.path.join(dirpath, f)
            rel = os.path.join(rel_dir, f).replace("\\", "/")
            ext = os.path.splitext(f)[1].lower()
            if ext in cfg.skip_extensions:
                continue
            if cfg.include_globs and not _match_any(rel, cfg.include_globs):
                continue
            if _match_any(rel, cfg.exclude_globs):
                continue
            yield full


def detect_type(full_path: str) -> str:
    p = Path(full_path)
    fmt = detect_format(p)
    if fmt is not None:
        return f"manifest_{fmt.name}"
    name = p.name.lower()
    if name.endswith(".class"):
        return "class"
    if is_archive(name):
        return "archive"
    kind = source_kind(name)
    if kind:
        return f"source_{kind}"
    return "other"


def scan_repository(
    repo_root: Path,
    include_globs: list[str] | None = None,
    exclude_globs: list[str] | None = None,
) -> RepoInventory:
    """
    Walk the input tree and sort files into manifests, archives, loose
    classes (grouped by owning module directory) and scannable sources.
    """
    include_globs = include_globs or []
    exclude_globs = exclude_globs or []

    skip_ext = {
        ".so", ".dll", ".exe", ".tar", ".gz", ".7z",
        ".png", ".jpg", ".jpeg", ".gif", ".pdf", ".docx", ".pptx", ".xlsx",
    }

    cfg = ScanConfig(
        include_globs=include_globs,
        exclude_globs=exclude_globs,
        skip_extensions=skip_ext,
        follow_symlinks=False,
    )

    repo_root = Path(repo_root)
    inv = RepoInventory(root=repo_root)
    loose_classes: List[Path] = []

    for full in iter_files(str(repo_root), cfg):
        p = Path(full)
        rel = p.relative_to(repo_root).as_posix()
        try:
            size = p.stat().st_size
        except OSError:
            size = None
        detected = detect_type(full)
        inv.files.append({"path": rel, "detected_type": detected, "size_bytes": size})

        if detected.startswith("manifest_"):
            if p.name.lower().endswith(".pom"):
                inv.published_poms.append(p)
            else:
                inv.manifests.append(p)
        elif detected == "archive":
            inv.archives.append(p)
        elif detected == "class":
            loose_classes.append(p)
        elif detected.startswith("source_"):
            inv.sources.append(p)

    for c in loose_classes:
        owner = inv.owning_module_dir(c)
        inv.class_files.setdefault(owner if owner is not None else "", []).append(c)
    return inv
