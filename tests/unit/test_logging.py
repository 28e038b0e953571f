"""Tests for ephemera.logging module."""

import re
from io import StringIO
from unittest import mock

import pytest
from loguru import logger

from ephemera.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_handlers():
    yield
    logger.remove()


def _strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text."""
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_container_leads_message(self) -> None:
        """Should put the container id before the message and other fields after it."""
        with mock.patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            configure_logging("DEBUG")
            logger.info("Container removed", container="abc123", image="redis:7")

            output = _strip_ansi(mock_stderr.getvalue())

        assert "INFO" in output
        assert "[abc123] Container removed image='redis:7'" in output
        assert "container=" not in output

    def test_respects_level(self) -> None:
        """Should drop records below the configured level."""
        with mock.patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            configure_logging("WARNING")
            logger.debug("Rewrote image through mirror", image="redis:7")

            assert mock_stderr.getvalue() == ""

    def test_level_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should fall back to EPHEMERA_LOG_LEVEL when no level is passed."""
        monkeypatch.setenv("EPHEMERA_LOG_LEVEL", "ERROR")
        with mock.patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            configure_logging()
            logger.warning("Teardown failed", container="abc123")
            logger.error("Provisioning failed")

            output = _strip_ansi(mock_stderr.getvalue())

        assert "Teardown failed" not in output
        assert "Provisioning failed" in output

    def test_braces_and_tags_in_extras_are_escaped(self) -> None:
        """Should print dict and markup-like extras verbatim."""
        with mock.patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            configure_logging("INFO")
            logger.info("Instance ready", ports={5432: 49153}, error="<none>")

            output = _strip_ansi(mock_stderr.getvalue())

        assert "ports={5432: 49153}" in output
        assert "error='<none>'" in output
