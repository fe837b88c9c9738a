"""
Description:
    Logging setup for AHMC runs.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.2
"""
import logging

from rich.console import Console
from rich.logging import RichHandler

def setup_logging(level: str = "INFO", rich_tracebacks: bool = True) -> None:
    """Configure the root logger with a rich handler."""
    console = Console(stderr=True)
    handler = RichHandler(console=console, rich_tracebacks=rich_tracebacks)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
