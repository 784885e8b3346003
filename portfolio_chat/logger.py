import logging
import os
import sys
from pathlib import Path


def setup_logger(
    name: str = "portfolio_chat",
    log_level: str | int | None = None,
    log_dir: str | Path | None = None,
) -> logging.Logger:
    """
    Configure the shared logger: stdout plus a file under `log_dir`.

    Level and directory default to LOG_LEVEL / LOG_DIR, else INFO and ./logs.
    """
    logger = logging.getLogger(name)

    # handlers already attached by an earlier call
    if logger.hasHandlers():
        return logger

    level = log_level or os.getenv("LOG_LEVEL", "INFO")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = False

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    directory = Path(log_dir or os.getenv("LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(directory / "portfolio_chat.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


logger = setup_logger()
