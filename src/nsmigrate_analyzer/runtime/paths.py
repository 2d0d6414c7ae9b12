import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath, PureWindowsPath

_WIN_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")
_UNC = re.compile(r"^\\\\[^\\]+")


@dataclass(frozen=True)
class NormalizedPath:
    raw: str
    kind: str  # windows|posix
    fs_path: str


def normalize_input_path(p: str) -> NormalizedPath:
    if not p:
        raise ValueError("Input path is empty")
    raw = p.strip().strip('"').strip("'")

    # keep windows semantics so parent computation works on any host
    if _WIN_DRIVE.match(raw) or _UNC.match(raw):
        return NormalizedPath(raw=raw, kind="windows", fs_path=str(PureWindowsPath(raw)))

    return NormalizedPath(raw=raw, kind="posix", fs_path=str(PurePosixPath(os.path.expanduser(raw))))


def compute_default_output_dir(input_dir: str, output_folder_name: str = "nsmigrate_output") -> str:
    """Sibling folder of the analysed tree: /work/app -> /work/nsmigrate_output."""
    np = normalize_input_path(input_dir)
    if np.kind == "windows":
        return str(PureWindowsPath(np.fs_path).parent / output_folder_name)
    return str(PurePosixPath(np.fs_path).parent / output_folder_name)


def to_local_path(p: str) -> str:
    return normalize_input_path(p).fs_path


def default_run_name(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("run_%Y%m%d_%H%M%S")
