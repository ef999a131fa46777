"""
Standard logging setup: rich console output plus an optional log file.
"""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", log_file: Optional[str] = None,
                      console: Optional[Console] = None) -> logging.Logger:
    """Install handlers on the ``workmesh`` logger and return it."""
    root = logging.getLogger("workmesh")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(rich_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        root.addHandler(file_handler)

    root.propagate = False
    return root
