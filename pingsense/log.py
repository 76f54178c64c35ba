import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()
err_console = Console(stderr=True)


def setup_logging(level="WARNING"):
    handler = RichHandler(
        console=err_console,
        rich_tracebacks=True,
        markup=False,
        show_time=False,
    )
    logging.basicConfig(
        level=level.upper() if isinstance(level, str) else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    return logging.getLogger("pingsense")
