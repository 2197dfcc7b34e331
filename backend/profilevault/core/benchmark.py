import hashlib
import logging
import math
import time
from typing import Callable, Optional

from profilevault.core.errors import UnsupportedEnvironmentError

logger = logging.getLogger(__name__)

START_ITERATIONS = 10_000
TOLERANCE_SECONDS = 0.1
STABILITY_SECONDS = 0.01
# perf_counter on every supported platform reports well below this
MAX_CLOCK_RESOLUTION = 1e-3

_TEST_PASSWORD = "benchmark-test-password"
_TEST_SALT = "benchmark-test-salt"


class KeyDerivationBenchmark:
    """
    Proposes a PBKDF2 iteration count that takes roughly `target_seconds` on
    this host.

    Convergence is heuristic: every round rescales the count by
    target / measured (proportional control, not a binary search). The loop
    is bounded by round count, total elapsed time, the tolerance window and a
    stability guard that compares consecutive round durations. The previous
    duration starts at zero, so one very fast first round ends the search.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        digest_name: str = "sha256",
        clock_resolution: Optional[float] = None,
    ):
        self.clock = clock
        self.digest_name = digest_name
        if clock_resolution is None and clock is time.perf_counter:
            clock_resolution = time.get_clock_info("perf_counter").resolution
        self.clock_resolution = clock_resolution

    def _check_environment(self):
        if self.digest_name not in hashlib.algorithms_available:
            raise UnsupportedEnvironmentError(f"digest {self.digest_name!r} not available")
        if not callable(self.clock):
            raise UnsupportedEnvironmentError("no timing source")
        if self.clock_resolution is not None and self.clock_resolution > MAX_CLOCK_RESOLUTION:
            raise UnsupportedEnvironmentError("clock resolution too coarse")

    def run(
        self,
        target_seconds: float = 1,
        max_total_seconds: float = 30,
        max_rounds: int = 20,
    ) -> int:
        self._check_environment()

        iterations = START_ITERATIONS
        last_duration = 0.0
        rounds = 0
        elapsed = 0.0
        started = self.clock()
        logger.info("Key derivation benchmark started (target %.2fs)", target_seconds)

        while rounds < max_rounds and elapsed < max_total_seconds:
            round_start = self.clock()
            rounds += 1

            for i in range(iterations):
                hashlib.new(self.digest_name, f"{_TEST_PASSWORD}{_TEST_SALT}{i}".encode("utf-8")).digest()
                elapsed = self.clock() - started
                if elapsed >= max_total_seconds:
                    break

            round_end = self.clock()
            duration = round_end - round_start
            elapsed = round_end - started

            if elapsed >= max_total_seconds or rounds >= max_rounds:
                break
            if abs(duration - target_seconds) < TOLERANCE_SECONDS:
                break
            if duration <= 0:
                break

            iterations = max(1, math.floor(iterations * (target_seconds / duration)))

            if abs(duration - last_duration) < STABILITY_SECONDS:
                break
            last_duration = duration

        iterations = max(1, int(iterations))
        logger.info(
            "Key derivation benchmark completed after %d round(s): %d iterations", rounds, iterations
        )
        return iterations
