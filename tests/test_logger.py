import importlib
import shutil
from pathlib import Path

# This import is intentionally module-level to test initial setup
import coreason_forge.utils.logger as logger_module


def test_logger_initialization_and_directory_creation() -> None:
    """
    Verify that the logger is initialized correctly and creates the logs directory.
    """
    log_dir = Path("logs")

    assert log_dir.is_dir()
    # stderr and JSON file sinks
    assert len(logger_module.logger._core.handlers) == 2


def test_logger_reloading() -> None:
    """
    Verify that reloading the logger module re-runs the setup logic.
    """
    log_dir = Path("logs")
    logger_module.logger.remove()
    if log_dir.exists():
        shutil.rmtree(log_dir)
    assert not log_dir.exists()

    importlib.reload(logger_module)

    assert log_dir.is_dir()
    assert len(logger_module.logger._core.handlers) == 2


def test_structured_fields_reach_file_sink() -> None:
    logger_module.logger.info("structured message", session_id="abc")
    logger_module.logger.complete()
    content = "".join(p.read_text() for p in Path("logs").glob("app.log*"))
    assert "structured message" in content
    assert '"session_id": "abc"' in content
