from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

DEFAULT_BACKOFF_STEP_MS = 60_000
DEFAULT_BACKOFF_CAP_MS = 300_000


@dataclass(frozen=True, slots=True)
class RateLimitState:
    hit_count: "int" = 0
    backoff_remaining_ms: "int" = 0


class RateLimitController:
    """
    RateLimitController tracks consecutive throttling responses from
    the usage and billing fetchers and imposes a growing, capped
    cooldown on upcoming refresh cycles.

    Its state outlives individual snapshots: it is only cleared by
    reset(), which the engine calls after a cycle in which every
    fetch succeeded.
    """

    def __init__(
        self,
        step_ms: "int" = DEFAULT_BACKOFF_STEP_MS,
        cap_ms: "int" = DEFAULT_BACKOFF_CAP_MS,
    ) -> "None":
        self._step_ms = step_ms
        self._cap_ms = cap_ms
        self._hit_count = 0
        self._backoff_remaining_ms = 0

    @property
    def state(self) -> "RateLimitState":
        return RateLimitState(
            hit_count=self._hit_count,
            backoff_remaining_ms=self._backoff_remaining_ms,
        )

    @property
    def is_backing_off(self) -> "bool":
        return self._backoff_remaining_ms > 0

    def record_hit(self) -> "None":
        """
        registers one throttling response and recomputes the cooldown.
        """
        self._hit_count += 1
        self._backoff_remaining_ms = min(self._cap_ms, self._step_ms * self._hit_count)
        logger.warning(
            "rate_limit_hit",
            hit_count=self._hit_count,
            backoff_ms=self._backoff_remaining_ms,
        )

    def should_skip(self, interval_ms: "int") -> "bool":
        """
        called at the start of a scheduled cycle. While a cooldown is
        pending the cycle is skipped and the cooldown shrinks by one
        interval.
        """
        if self._backoff_remaining_ms <= 0:
            return False

        self._backoff_remaining_ms = max(0, self._backoff_remaining_ms - interval_ms)
        logger.info(
            "rate_limit_cycle_skipped",
            hit_count=self._hit_count,
            backoff_remaining_ms=self._backoff_remaining_ms,
        )
        return True

    def reset(self) -> "None":
        if self._hit_count or self._backoff_remaining_ms:
            logger.info("rate_limit_reset", previous_hit_count=self._hit_count)
        self._hit_count = 0
        self._backoff_remaining_ms = 0
