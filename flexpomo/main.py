"""Bootstrap of the timer core for a host application.

Resolves the data directory, configures logging, opens the SQLite store and
returns a loaded ``TimerContext``. The host owns the Qt event loop and starts
a ``TickScheduler`` on the returned context.
"""

from __future__ import annotations

from pathlib import Path

from flexpomo.common.logger import setup_logging
from flexpomo.common.paths import ProjectPaths
from flexpomo.core.clock import Clock
from flexpomo.core.context import TimerContext
from flexpomo.data.persistence import PersistenceAdapter
from flexpomo.data.storage import Storage


def default_db_path() -> Path:
    """Database path under ``$FLEXPOMO_HOME`` or ``./.flexpomo``."""
    return ProjectPaths.build().db


def bootstrap(
    root: str | Path | None = None,
    clock: Clock | None = None,
    log_to_file: bool = True,
    console_log: bool = False,
) -> TimerContext:
    """Creates the core's dependencies and loads the persisted state."""
    paths = ProjectPaths.build(root)
    if log_to_file:
        setup_logging(paths.logs, console=console_log)

    storage = Storage(paths.db)
    storage.init_db()

    context = TimerContext(PersistenceAdapter(storage), clock=clock)
    context.load()
    return context
