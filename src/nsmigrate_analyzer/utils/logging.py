import logging
from pathlib import Path
from typing import Optional

LOGGER_NAME = "nsmigrate_analyzer"


def setup_logger(
    log_path: Optional[Path],
    level: str = "INFO",
    run_name: Optional[str] = None,
    stream: bool = True,
) -> logging.Logger:
    """
    Run logger: console plus <run>/logs/analyzer.log.

    Calling it again for another run closes and replaces the previous
    handlers, so one process can analyze several trees in a row.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    tag = f"[{run_name.replace('%', '%%')}] " if run_name else ""
    if stream:
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter(f"%(asctime)s %(levelname)s {tag}%(message)s"))
        logger.addHandler(sh)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        # scan workers log from pool threads
        fh.setFormatter(logging.Formatter(f"%(asctime)s %(levelname)s %(threadName)s {tag}%(message)s"))
        logger.addHandler(fh)
    return logger
