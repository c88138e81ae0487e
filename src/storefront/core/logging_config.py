import logging
from typing import Optional

from storefront.core.config import config

_configured = False


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Install a single stream handler on the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    global _configured

    level_name = (level or config.app.log_level).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt or config.app.log_format))
    root.addHandler(handler)

    # SQL echo goes through sqlalchemy.engine; keep it quiet unless asked for
    if not config.database.echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured = True
