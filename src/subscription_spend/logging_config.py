import logging
import os
from pathlib import Path
from typing import Optional


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file is loaded
    )

    # Per-record skip warnings are noisy on large histories; keep them opt-in.
    grouping_level = getattr(logging, (os.getenv("GROUPING_LOG_LEVEL") or "").upper(), numeric_level)
    if not isinstance(grouping_level, int):
        grouping_level = numeric_level
    logging.getLogger("subscription_spend.periods").setLevel(grouping_level)
