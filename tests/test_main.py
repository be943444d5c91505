import logging

import pytest

from flexpomo.common.logger import get_logger
from flexpomo.common.paths import DB_FILENAME, HOME_ENV_VAR, ProjectPaths, ensure_directory
from flexpomo.core.clock import ManualClock
from flexpomo.core.models import TimerState
from flexpomo.main import bootstrap, default_db_path

T0 = 1_700_000_000_000


def test_project_paths_prefer_explicit_root(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(HOME_ENV_VAR, str(tmp_path / "env"))

    paths = ProjectPaths.build(tmp_path / "explicit")

    assert paths.db == tmp_path / "explicit" / DB_FILENAME
    assert paths.logs.is_dir()


def test_default_db_path_uses_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(HOME_ENV_VAR, str(tmp_path / "env"))
    assert default_db_path() == tmp_path / "env" / DB_FILENAME


def test_ensure_directory_must_exist(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        ensure_directory(tmp_path / "missing", must_exist=True)
    (tmp_path / "file").write_text("x")
    with pytest.raises(NotADirectoryError):
        ensure_directory(tmp_path / "file", must_exist=True)


def test_bootstrap_resumes_persisted_session(tmp_path) -> None:
    context = bootstrap(tmp_path, clock=ManualClock(T0), log_to_file=False)
    context.start_focus(T0)

    resumed = bootstrap(tmp_path, clock=ManualClock(T0 + 90_000), log_to_file=False)

    assert (tmp_path / DB_FILENAME).exists()
    assert resumed.state.current_state == TimerState.FOCUS
    assert resumed.state.elapsed_time == 90_000


def test_get_logger_attaches_file_handlers_once(tmp_path) -> None:
    name = "flexpomo-test-logger"
    logger = get_logger(name, log_dir=tmp_path)
    get_logger(name, log_dir=tmp_path)
    try:
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert len(logger.handlers) == 2
        assert "hello" in (tmp_path / "latest.log").read_text(encoding="utf-8")
        assert (tmp_path / f"{name}.log").exists()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
