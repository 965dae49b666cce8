"""
Tests for logging_utils.py - phase tracking logger.
"""

import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from logging_utils import Phase, PhaseLogger, TimingTracker, create_phase_logger

LOGGER_NAME = "dev_tests.phase_logger"


def _logger():
    return logging.getLogger(LOGGER_NAME)


class TestTimingTracker:
    """Tests for TimingTracker."""

    def test_end_without_start(self):
        assert TimingTracker().end("missing") == 0.0

    def test_records_elapsed(self):
        tracker = TimingTracker()
        tracker.start("a")
        elapsed = tracker.end("a")
        assert elapsed >= 0.0
        assert tracker.get("a") == elapsed
        assert tracker.get_all() == {"a": elapsed}


class TestPhaseLogger:
    """Tests for PhaseLogger."""

    def test_quiet_phases_only_track_timing(self, caplog):
        phase_logger = PhaseLogger("ann-1", verbose=False, logger=_logger())
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            with phase_logger.phase(Phase.RESOLVE):
                pass
            phase_logger.log_timing_summary()

        assert caplog.records == []
        assert list(phase_logger.timing_tracker.get_all()) == ["phase_ANCHOR_RESOLUTION_1"]

    def test_verbose_phase_header_and_footer(self, caplog):
        phase_logger = PhaseLogger("ann-1", verbose=True, logger=_logger())
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            with phase_logger.phase(Phase.MUTATE, sub_label="paragraph 1"):
                phase_logger.info("deleting span")

        messages = [r.getMessage() for r in caplog.records]
        assert "DOCUMENT_MUTATION [ann-1] - paragraph 1" in messages[0]
        assert "[MUT]" in messages[1] and "deleting span" in messages[1]
        assert "DOCUMENT_MUTATION COMPLETED" in messages[2]

    def test_outcome_levels(self, caplog):
        phase_logger = create_phase_logger("ann-2")
        phase_logger.logger = _logger()
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            phase_logger.log_outcome("blocked", reason="anchor_ambiguous", context={"candidate_count": 2})

        assert len(caplog.records) == 1
        message = caplog.records[0].getMessage()
        assert "[BLOCKED]" in message
        assert "OUTCOME: BLOCKED (anchor_ambiguous)" in message

    def test_error_includes_session(self, caplog):
        phase_logger = PhaseLogger("ann-3", logger=_logger())
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            phase_logger.error("Rollback failed")

        assert caplog.records[0].levelno == logging.ERROR
        assert "[ann-3] Rollback failed" in caplog.records[0].getMessage()
