"""
Error taxonomy for a single arbitrage attempt.

Every stage failure aborts only the attempt that raised it; the orchestrator
logs it with the execution id and keeps ticking.
"""
from typing import List, Optional


class ArbitrageError(Exception):
    """Base class for failures that abort one arbitrage attempt."""


class ConfigError(Exception):
    """Fatal start-up configuration problem (missing key, bad number)."""


class UnsupportedDirection(ArbitrageError):
    """Buy leg does not start from the native mint."""


class QuoteUnavailable(ArbitrageError):
    """Quoting service returned no usable quote. Safe to retry next tick."""


class CompilationFailed(ArbitrageError):
    """Lookup-table resolution, blockhash fetch or message compilation failed."""


class SigningFailed(ArbitrageError):
    """Payer could not sign a bundle transaction."""


class SubmissionFailed(ArbitrageError):
    """Relay rejected the bundle, or reported it as failed."""


class SimulationFailed(SubmissionFailed):
    """Dry-run simulation reported an error (simulate-only mode)."""

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.logs = logs or []


class ConfirmationTimeout(ArbitrageError):
    """
    Bundle was accepted but no landed status was seen before the timeout.

    The outcome is ambiguous: the bundle may still land after we stop polling.
    """

    def __init__(self, bundle_id: str, timeout: float):
        super().__init__(
            f"Bundle {bundle_id} not confirmed within {timeout:.1f}s (may still land)"
        )
        self.bundle_id = bundle_id
        self.timeout = timeout
