from loguru import logger

from livesettings.core.config import Settings
from livesettings.core.context import RequestContext
from livesettings.core.logger import setup_logging


def test_setup_logging_tags_records_with_scope_id(capsys):
    setup_logging(Settings(_env_file=None, LOG_LEVEL="DEBUG"))
    with RequestContext() as scope:
        logger.debug("inside scope")
    logger.debug("outside scope")
    logger.remove()

    lines = capsys.readouterr().err.splitlines()
    assert any("Logging initialized. Level: DEBUG" in line for line in lines)
    assert any(f"| {scope.id} |" in line and "inside scope" in line for line in lines)
    assert any("| - |" in line and "outside scope" in line for line in lines)
