import logging
from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: int = logging.WARNING) -> None:
    """Configure root logging to use RichHandler on stderr, so stdout stays parseable.

    Calling this multiple times is safe; it replaces the root handlers.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    logging.basicConfig(
        level=level,
        format="%(name)s | %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, rich_tracebacks=True)],
    )


__all__ = ["setup_logging"]
