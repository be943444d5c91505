from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HOME_ENV_VAR = "FLEXPOMO_HOME"
DB_FILENAME = "flexpomo.db"


# Creates the directory if missing, or errors out when it must already exist.
def ensure_directory(path: Path, must_exist: bool = False) -> Path:
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass(frozen=True)
class ProjectPaths:
    data: Path
    logs: Path
    db: Path

    @staticmethod
    def build(root: str | Path | None = None) -> ProjectPaths:
        """Resolve the data directory from ``root``, ``$FLEXPOMO_HOME`` or ``./.flexpomo``."""
        if root is None:
            env_root = os.getenv(HOME_ENV_VAR)
            root = Path(env_root) if env_root else Path.cwd() / ".flexpomo"
        data = ensure_directory(Path(root))
        logs = ensure_directory(data / "logs")
        return ProjectPaths(data=data, logs=logs, db=data / DB_FILENAME)
