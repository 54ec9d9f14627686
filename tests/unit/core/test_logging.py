"""Tests for per-area log routing."""

import logging

from matilda_dictation.core.logging import AreaFileHandler, area_for, setup_logging


def _record(message, area=None):
    record = logging.LogRecord("matilda_dictation.test", logging.INFO, __file__, 1, message, None, None)
    if area is not None:
        record.dictation_area = area
    return record


class TestAreaFor:
    """Test mapping log_filename values to areas."""

    def test_known_areas(self):
        assert area_for("recognition.txt") == "recognition"
        assert area_for("server.txt") == "server"

    def test_missing_filename_uses_main(self):
        assert area_for(None) == "main"
        assert area_for("") == "main"


class TestAreaFileHandler:
    """Test the file router used by the queue listener."""

    def test_records_land_in_their_area_file(self, tmp_path):
        handler = AreaFileHandler(tmp_path, max_bytes=1024 * 1024, backup_count=1)
        handler.setFormatter(logging.Formatter("%(message)s"))

        handler.emit(_record("session opened", "recognition"))
        handler.emit(_record("client connected", "server"))
        handler.emit(_record("untagged"))
        handler.close()

        assert (tmp_path / "dictation-recognition.log").read_text().strip() == "session opened"
        assert (tmp_path / "dictation-server.log").read_text().strip() == "client connected"
        assert (tmp_path / "dictation-main.log").read_text().strip() == "untagged"

    def test_unwritable_directory_drops_records(self, tmp_path):
        handler = AreaFileHandler(tmp_path / "missing" / "dir", max_bytes=1024, backup_count=1)

        handler.emit(_record("lost", "server"))
        handler.close()

        assert not (tmp_path / "missing").exists()


class TestSetupLogging:
    """Test logger construction."""

    def test_logger_is_reused_and_isolated(self):
        first = setup_logging("matilda_dictation.tests.reuse", log_filename="adapters.txt")
        second = setup_logging("matilda_dictation.tests.reuse")

        assert first is second
        assert first.propagate is False
        assert len(first.handlers) == 1
