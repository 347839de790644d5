"""Quota governor for the YouTube Data API daily budget."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from src.utils.logging import get_logger

from .config import CurationConfig
from .errors import ExhaustedSignal

logger = get_logger(__name__)

WARNING_THRESHOLD = 0.8


class CallClass(str, Enum):
    """External call classes, each with its own fixed unit cost."""

    SEARCH = "search"
    VIDEO_DETAIL = "video_detail"
    CHANNEL_STAT = "channel_stat"


class QuotaGovernor:
    """Tracks cumulative quota units against a fixed daily budget.

    The guard is conservative: a reservation is refused whenever it would push
    projected usage strictly above the budget, before the call is made. The
    window resets at the provider's reset hour (midnight Pacific for YouTube).

    Instances are passed to every component that spends quota; there is no
    process-wide counter, so parallel runs and tests each get their own.
    """

    def __init__(
        self,
        daily_budget: int,
        costs: dict[CallClass, int],
        reset_timezone: str = "America/Los_Angeles",
        reset_hour: int = 0,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the governor.

        Args:
            daily_budget: Units available per provider day.
            costs: Fixed unit cost per call class.
            reset_timezone: IANA timezone the provider resets in.
            reset_hour: Local hour of the provider reset.
            clock: Returns the current aware datetime. Defaults to UTC now.
        """
        self.daily_budget = daily_budget
        self.costs = dict(costs)
        self.reset_tz = ZoneInfo(reset_timezone)
        self.reset_hour = reset_hour
        self._clock = clock or (lambda: datetime.now(UTC))

        self.used = 0
        self.calls: dict[CallClass, int] = {call_class: 0 for call_class in CallClass}
        self.units_by_class: dict[CallClass, int] = {call_class: 0 for call_class in CallClass}
        self._exhausted = False
        self._warned = False
        self.window_start = self._current_window_start()

    @classmethod
    def from_config(
        cls, config: CurationConfig, clock: Callable[[], datetime] | None = None
    ) -> "QuotaGovernor":
        return cls(
            daily_budget=config.daily_quota_budget,
            costs={
                CallClass.SEARCH: config.search_cost,
                CallClass.VIDEO_DETAIL: config.detail_cost,
                CallClass.CHANNEL_STAT: config.channel_cost,
            },
            reset_timezone=config.quota_reset_timezone,
            reset_hour=config.quota_reset_hour,
            clock=clock,
        )

    def _current_window_start(self) -> datetime:
        local_now = self._clock().astimezone(self.reset_tz)
        boundary = local_now.replace(hour=self.reset_hour, minute=0, second=0, microsecond=0)
        if local_now < boundary:
            boundary -= timedelta(days=1)
        return boundary

    @property
    def next_reset(self) -> datetime:
        return self.window_start + timedelta(days=1)

    def _roll_window(self) -> None:
        start = self._current_window_start()
        if start != self.window_start:
            logger.info(
                "quota_window_reset",
                previous_window=self.window_start.isoformat(),
                units_used=self.used,
            )
            self._reset(start)

    def _reset(self, window_start: datetime) -> None:
        self.window_start = window_start
        self.used = 0
        self.calls = {call_class: 0 for call_class in CallClass}
        self.units_by_class = {call_class: 0 for call_class in CallClass}
        self._exhausted = False
        self._warned = False

    def cost_of(self, call_class: CallClass) -> int:
        return self.costs[call_class]

    def remaining(self) -> int:
        self._roll_window()
        if self._exhausted:
            return 0
        return max(0, self.daily_budget - self.used)

    def reserve(self, cost_units: int, call_class: CallClass | None = None) -> bool:
        """Reserve units ahead of an external call.

        Args:
            cost_units: Units the call will cost.
            call_class: Optional call class for per-class accounting.

        Returns:
            False if the call would push usage strictly above the budget,
            True otherwise. Reserved units count as used immediately.
        """
        self._roll_window()

        if self._exhausted or self.used + cost_units > self.daily_budget:
            logger.info(
                "quota_refused",
                requested=cost_units,
                used=self.used,
                budget=self.daily_budget,
                call_class=call_class.value if call_class else None,
            )
            return False

        self._add(cost_units, call_class)
        return True

    def reserve_call(self, call_class: CallClass) -> None:
        """Reserve the fixed cost of one call of the given class.

        Raises:
            ExhaustedSignal: If the reservation is refused.
        """
        if not self.reserve(self.cost_of(call_class), call_class):
            raise ExhaustedSignal(
                f"quota exhausted before {call_class.value} call",
                remaining=self.remaining(),
            )

    def record_usage(self, cost_units: int, call_class: CallClass | None = None) -> None:
        """Count units spent without a prior reservation."""
        self._roll_window()
        self._add(cost_units, call_class)

    def _add(self, cost_units: int, call_class: CallClass | None) -> None:
        self.used += cost_units
        if call_class is not None:
            self.calls[call_class] += 1
            self.units_by_class[call_class] += cost_units

        if not self._warned and self.used >= self.daily_budget * WARNING_THRESHOLD:
            self._warned = True
            logger.warning(
                "quota_warning",
                used=self.used,
                budget=self.daily_budget,
                percent_used=round(100 * self.used / self.daily_budget, 1),
            )

    def is_exhausted(self) -> bool:
        """True once the budget is spent or the provider reported quotaExceeded."""
        self._roll_window()
        return self._exhausted or self.used >= self.daily_budget

    def mark_exhausted(self) -> None:
        """Record that the provider itself reported the quota as exceeded."""
        self._roll_window()
        self._exhausted = True
        logger.warning(
            "quota_marked_exhausted",
            used=self.used,
            budget=self.daily_budget,
            next_reset=self.next_reset.isoformat(),
        )

    def force_reset(self, reason: str) -> None:
        """Operator override: start a fresh window immediately."""
        logger.warning("quota_force_reset", reason=reason, units_used=self.used)
        self._reset(self._current_window_start())

    def snapshot(self) -> dict[str, object]:
        self._roll_window()
        return {
            "used": self.used,
            "budget": self.daily_budget,
            "remaining": self.remaining(),
            "exhausted": self.is_exhausted(),
            "window_start": self.window_start.isoformat(),
            "next_reset": self.next_reset.isoformat(),
            "calls": {k.value: v for k, v in self.calls.items()},
            "units": {k.value: v for k, v in self.units_by_class.items()},
        }


class RunBudget:
    """Caps the units a single curation run may spend on top of the daily budget.

    Wraps a shared QuotaGovernor and exposes the same reservation surface, so
    the Candidate Source does not need to know whether a run-level cap exists.
    """

    def __init__(self, governor: QuotaGovernor, budget_units: int | None = None):
        self.governor = governor
        self.budget_units = budget_units
        self.spent = 0

    def cost_of(self, call_class: CallClass) -> int:
        return self.governor.cost_of(call_class)

    def reserve(self, cost_units: int, call_class: CallClass | None = None) -> bool:
        if self.budget_units is not None and self.spent + cost_units > self.budget_units:
            logger.info(
                "run_budget_refused",
                requested=cost_units,
                spent=self.spent,
                budget_units=self.budget_units,
            )
            return False
        if not self.governor.reserve(cost_units, call_class):
            return False
        self.spent += cost_units
        return True

    def reserve_call(self, call_class: CallClass) -> None:
        if not self.reserve(self.cost_of(call_class), call_class):
            raise ExhaustedSignal(f"run budget exhausted before {call_class.value} call")

    def record_usage(self, cost_units: int, call_class: CallClass | None = None) -> None:
        self.spent += cost_units
        self.governor.record_usage(cost_units, call_class)

    def mark_exhausted(self) -> None:
        self.governor.mark_exhausted()

    def is_exhausted(self) -> bool:
        if self.budget_units is not None and self.spent >= self.budget_units:
            return True
        return self.governor.is_exhausted()
