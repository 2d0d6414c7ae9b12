from pathlib import Path
from typing import Optional, Tuple


def load_text(path: str, max_bytes: Optional[int] = None) -> Tuple[str, str]:
    """(text, error). error is empty on success; text is empty when the file was not read."""
    p = Path(path)
    try:
        size = p.stat().st_size
        if max_bytes is not None and size > max_bytes:
            return "", f"too_large:{size} bytes exceeds {max_bytes}"
        data = p.read_bytes()
    except OSError as e:
        return "", f"read_error:{e}"

    # utf-8 (BOM tolerated) first, latin-1 never fails
    try:
        return data.decode("utf-8-sig"), ""
    except UnicodeDecodeError:
        return data.decode("latin-1"), ""
