import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    root = logging.getLogger()
    if getattr(root, "_fee_ledger_configured", False):
        root.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    # SQL echo is controlled by the engine, keep the sqlalchemy logger quiet by default
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    root._fee_ledger_configured = True
