"""
Enhanced Logging System for the Anchor Edit Engine
===================================================

Provides visual, colored, structured logging with phase tracking for the
apply pipeline.
IMPORTANT: No emojis in console output (Windows encoding issues).
"""

import logging
import time
from typing import Optional, Dict, Any
from contextlib import contextmanager
from datetime import datetime
from colorama import Fore, Style, init

# Initialize colorama for Windows
init(autoreset=True)

# Phase definitions
class Phase:
    """Phase constants for the apply pipeline"""
    RESOLVE = "ANCHOR_RESOLUTION"
    CONFLICT_CHECK = "CONFLICT_CHECK"
    SANITIZE = "SANITIZE_REPLACEMENT"
    MUTATE = "DOCUMENT_MUTATION"
    VERIFY = "WRITE_VERIFICATION"
    ROLLBACK = "ROLLBACK"
    STORE_UPDATE = "STORE_UPDATE"

# Phase colors
PHASE_COLORS = {
    Phase.RESOLVE: Fore.CYAN,
    Phase.CONFLICT_CHECK: Fore.BLUE,
    Phase.SANITIZE: Fore.WHITE,
    Phase.MUTATE: Fore.YELLOW,
    Phase.VERIFY: Fore.GREEN,
    Phase.ROLLBACK: Fore.RED,
    Phase.STORE_UPDATE: Fore.MAGENTA,
}

# Phase icons (text-based, no emojis for Windows)
PHASE_ICONS = {
    Phase.RESOLVE: "[RES]",
    Phase.CONFLICT_CHECK: "[CHK]",
    Phase.SANITIZE: "[SAN]",
    Phase.MUTATE: "[MUT]",
    Phase.VERIFY: "[VER]",
    Phase.ROLLBACK: "[RBK]",
    Phase.STORE_UPDATE: "[STO]",
}


class TimingTracker:
    """Track timing for phases and operations"""

    def __init__(self):
        self._timings: Dict[str, float] = {}
        self._start_times: Dict[str, float] = {}

    def start(self, key: str):
        """Start timing for a key"""
        self._start_times[key] = time.time()

    def end(self, key: str) -> float:
        """End timing and return elapsed seconds"""
        if key not in self._start_times:
            return 0.0
        elapsed = time.time() - self._start_times[key]
        self._timings[key] = elapsed
        del self._start_times[key]
        return elapsed

    def get(self, key: str) -> Optional[float]:
        return self._timings.get(key)

    def get_all(self) -> Dict[str, float]:
        """Get all recorded timings"""
        return self._timings.copy()


class PhaseLogger:
    """
    Logger with phase tracking and visual formatting

    Usage:
        phase_logger = PhaseLogger(session_id="ann-42", verbose=True)

        with phase_logger.phase(Phase.RESOLVE):
            phase_logger.info("Searching for quoted text...")
            # ... resolution logic ...
            phase_logger.log_outcome("applied", reason="ok")
    """

    def __init__(
        self,
        session_id: str,
        verbose: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        self.session_id = session_id
        self.verbose = verbose
        self.logger = logger or logging.getLogger(__name__)
        self.timing_tracker = TimingTracker()
        self._current_phase: Optional[str] = None
        self._phase_stack = []

    @contextmanager
    def phase(self, phase_name: str, sub_label: Optional[str] = None):
        """
        Context manager for phase tracking with automatic timing

        Example:
            with phase_logger.phase(Phase.VERIFY, sub_label="paragraph 3"):
                # verification logic here
                pass
        """
        self._enter_phase(phase_name, sub_label)
        try:
            yield self
        finally:
            self._exit_phase(phase_name)

    def _enter_phase(self, phase_name: str, sub_label: Optional[str] = None):
        self._phase_stack.append(self._current_phase)
        self._current_phase = phase_name

        timing_key = f"phase_{phase_name}_{len(self._phase_stack)}"
        self.timing_tracker.start(timing_key)

        self._print_phase_header(phase_name, sub_label)

    def _exit_phase(self, phase_name: str):
        timing_key = f"phase_{phase_name}_{len(self._phase_stack)}"
        elapsed = self.timing_tracker.end(timing_key)

        self._print_phase_footer(phase_name, elapsed)

        self._current_phase = self._phase_stack.pop() if self._phase_stack else None

    def _print_phase_header(self, phase_name: str, sub_label: Optional[str] = None):
        """Print phase header (single line; apply phases are short)"""
        if not self.verbose:
            return
        color = PHASE_COLORS.get(phase_name, Fore.WHITE)
        icon = PHASE_ICONS.get(phase_name, "[???]")
        timestamp = datetime.now().strftime("%H:%M:%S")
        sub_str = f" - {sub_label}" if sub_label else ""

        self.logger.info(
            f"{color}{icon} {phase_name} [{self.session_id}]{sub_str} [{timestamp}]{Style.RESET_ALL}"
        )

    def _print_phase_footer(self, phase_name: str, elapsed: float):
        if not self.verbose:
            return
        color = PHASE_COLORS.get(phase_name, Fore.WHITE)
        icon = PHASE_ICONS.get(phase_name, "[???]")
        elapsed_str = f"{elapsed * 1000:.1f}ms" if elapsed > 0 else "N/A"

        self.logger.info(
            f"{color}{icon} {phase_name} COMPLETED (Elapsed: {elapsed_str}){Style.RESET_ALL}"
        )

    def info(self, message: str):
        """Log info message with current phase context"""
        if self._current_phase:
            color = PHASE_COLORS.get(self._current_phase, Fore.WHITE)
            icon = PHASE_ICONS.get(self._current_phase, "[???]")
            self.logger.info(f"{color}{icon}{Style.RESET_ALL} [{self.session_id}] {message}")
        else:
            self.logger.info(f"[{self.session_id}] {message}")

    def debug(self, message: str):
        """Log debug message (only if verbose)"""
        if self.verbose:
            self.logger.debug(f"{Fore.WHITE}{Style.DIM}[{self.session_id}] {message}{Style.RESET_ALL}")

    def warning(self, message: str):
        self.logger.warning(f"{Fore.YELLOW}[WARN] [{self.session_id}] {message}{Style.RESET_ALL}")

    def error(self, message: str):
        self.logger.error(f"{Fore.RED}{Style.BRIGHT}[ERROR] [{self.session_id}] {message}{Style.RESET_ALL}")

    def log_outcome(
        self,
        outcome: str,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Log the terminal outcome of an apply call

        Args:
            outcome: Outcome text (e.g., "applied", "blocked", "failed")
            reason: Optional reason code
            context: Optional structured diagnostics
        """
        if outcome.lower() == "applied":
            color = Fore.GREEN + Style.BRIGHT
            icon = "[OK]"
        elif outcome.lower() == "blocked":
            color = Fore.YELLOW + Style.BRIGHT
            icon = "[BLOCKED]"
        else:
            color = Fore.RED + Style.BRIGHT
            icon = "[FAILED]"

        reason_str = f" ({reason})" if reason else ""
        self.logger.info(
            f"{color}{icon} [{self.session_id}] OUTCOME: {outcome.upper()}{reason_str}{Style.RESET_ALL}"
        )

        if context and self.verbose:
            for key, value in context.items():
                self.logger.info(f"  {key}: {value}")

    def log_timing_summary(self):
        """Log timing summary for all phases (only if verbose)"""
        if not self.verbose:
            return

        timings = self.timing_tracker.get_all()
        if not timings:
            return

        total_time = 0.0
        for key, elapsed in sorted(timings.items()):
            phase_name = key.replace("phase_", "").rsplit("_", 1)[0]
            color = PHASE_COLORS.get(phase_name, Fore.WHITE)
            self.logger.info(f"{color}{phase_name:30s} {elapsed * 1000:8.1f}ms{Style.RESET_ALL}")
            total_time += elapsed

        self.logger.info(
            f"{Fore.WHITE}{Style.BRIGHT}TOTAL TIME [{self.session_id}]: {total_time * 1000:.1f}ms{Style.RESET_ALL}"
        )


# Convenience functions
def create_phase_logger(session_id: str, verbose: bool = False) -> PhaseLogger:
    """Create a new PhaseLogger instance"""
    return PhaseLogger(session_id=session_id, verbose=verbose)
