"""Tests for toastsync.pipeline.progress and toastsync.logging_setup."""

import io
import logging

from rich.console import Console
from rich.logging import RichHandler

from toastsync.logging_setup import configure_logging
from toastsync.pipeline.progress import ConsoleProgressReporter, NullProgressReporter


class TestConsoleProgressReporter:
    """Tests for ConsoleProgressReporter."""

    def test_prints_each_event(self):
        """Date, file and completion events are rendered."""
        buffer = io.StringIO()
        reporter = ConsoleProgressReporter(Console(file=buffer, width=120))

        reporter.on_date_complete(1, 2, "2024-01-01", 5)
        reporter.on_file_processed("snapshots/2024-01-01/metadata.json", "uploaded")
        reporter.on_complete(4, 1, 0, 2500)

        output = buffer.getvalue()
        assert "[1/2] 2024-01-01: 5 files" in output
        assert "uploaded snapshots/2024-01-01/metadata.json" in output
        assert "Upload complete in 2.5s" in output
        assert "skipped: 1" in output

    def test_null_reporter_accepts_events(self):
        """The null reporter ignores everything."""
        reporter = NullProgressReporter()
        reporter.on_date_complete(1, 1, "2024-01-01", 0)
        reporter.on_file_processed("x", "failed")
        reporter.on_complete(0, 0, 1, 0)


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_installs_single_rich_handler(self):
        """Repeated calls leave exactly one handler on the root logger."""
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging(verbose=True)
            configure_logging(verbose=True)

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0], RichHandler)
            assert root.level == logging.INFO
            assert logging.getLogger("google").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
