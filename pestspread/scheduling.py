"""Per-day action schedules.

A simulation advances one calendar day per step over the closed range
[start, end]. Each process (spread, mortality, movement, output, ...) is
gated by a schedule: a list of booleans with one entry per step, true on
the days the process runs. Schedules are derived from frequency rules:

  every_n_days(n)   true at step offsets 0, n, 2n, ...
  daily()           every step
  weekly(n)         last day of every n-th week (see Date.last_day_of_week)
  monthly(n)        last day of every n-th calendar month
  yearly(m, d)      every occurrence of month m, day d
  end_of_year(n)    31 December of every n-th year
  in_season(s)      days whose month lies in season s
  final_day()       the last step only

An inverted range (end < start) yields an empty schedule rather than an
error; callers that need at least one step check for that themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from pestspread.dates import Date, Season, date_range
from pestspread.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# FREQUENCY RULES
# ═══════════════════════════════════════════════════════════════════════

RULE_KINDS = (
    "every_n_days", "daily", "weekly", "monthly", "yearly",
    "end_of_year", "in_season", "final_day",
)


@dataclass(frozen=True)
class FrequencyRule:
    """Declarative description of which days an action runs on.

    Use the classmethod constructors rather than building one by hand.
    """
    kind: str
    n: int = 1
    month: int = 1
    day: int = 1
    season: Optional[Season] = None

    def __post_init__(self):
        if self.kind not in RULE_KINDS:
            raise ConfigurationError(
                f"unknown frequency rule '{self.kind}', expected one of {RULE_KINDS}"
            )
        if self.n < 1:
            raise ConfigurationError(
                f"frequency rule '{self.kind}' needs n >= 1, got {self.n}"
            )
        if self.kind == "in_season" and self.season is None:
            raise ConfigurationError("in_season rule requires a season")

    @classmethod
    def every_n_days(cls, n: int) -> "FrequencyRule":
        return cls("every_n_days", n=n)

    @classmethod
    def daily(cls) -> "FrequencyRule":
        return cls("daily")

    @classmethod
    def weekly(cls, n: int = 1) -> "FrequencyRule":
        return cls("weekly", n=n)

    @classmethod
    def monthly(cls, n: int = 1) -> "FrequencyRule":
        return cls("monthly", n=n)

    @classmethod
    def yearly(cls, month: int, day: int) -> "FrequencyRule":
        return cls("yearly", month=month, day=day)

    @classmethod
    def end_of_year(cls, n: int = 1) -> "FrequencyRule":
        return cls("end_of_year", n=n)

    @classmethod
    def in_season(cls, season: Season) -> "FrequencyRule":
        return cls("in_season", season=season)

    @classmethod
    def final_day(cls) -> "FrequencyRule":
        return cls("final_day")


# ═══════════════════════════════════════════════════════════════════════
# SCHEDULER
# ═══════════════════════════════════════════════════════════════════════

class Scheduler:
    """Maps the daily steps of [start, end] to boolean schedules.

    Args:
        start: First simulated day.
        end: Last simulated day (inclusive).
    """

    def __init__(self, start: Date, end: Date):
        self.start = start
        self.end = end
        self.dates: List[Date] = list(date_range(start, end))

    @property
    def num_steps(self) -> int:
        return len(self.dates)

    def __len__(self) -> int:
        return self.num_steps

    def date_of(self, step: int) -> Date:
        return self.dates[step]

    # ── rule dispatch ────────────────────────────────────────────────

    def schedule(self, rule: FrequencyRule) -> List[bool]:
        """Evaluate a frequency rule over every step."""
        if rule.kind == "every_n_days":
            return self.schedule_action_nsteps(rule.n)
        if rule.kind == "daily":
            return [True] * self.num_steps
        if rule.kind == "weekly":
            return self.schedule_action_weekly(rule.n)
        if rule.kind == "monthly":
            return self.schedule_action_monthly(rule.n)
        if rule.kind == "yearly":
            return self.schedule_action_yearly(rule.month, rule.day)
        if rule.kind == "end_of_year":
            return self.schedule_action_end_of_year(rule.n)
        if rule.kind == "in_season":
            return self.schedule_spread(rule.season)
        return self.schedule_action_final()

    # ── individual schedules ─────────────────────────────────────────

    def schedule_spread(self, season: Season) -> List[bool]:
        return [season.month_in_season(d.month) for d in self.dates]

    def schedule_action_nsteps(self, n: int) -> List[bool]:
        if n < 1:
            raise ConfigurationError(f"step interval must be >= 1, got {n}")
        return [step % n == 0 for step in range(self.num_steps)]

    def _every_nth(self, marks: List[bool], n: int) -> List[bool]:
        """Keep every n-th true entry of marks (the n-th, 2n-th, ...)."""
        result = []
        count = 0
        for mark in marks:
            if mark:
                count += 1
                result.append(count % n == 0)
            else:
                result.append(False)
        return result

    def schedule_action_monthly(self, n: int = 1) -> List[bool]:
        marks = [d.is_last_day_of_month() for d in self.dates]
        return self._every_nth(marks, n)

    def schedule_action_weekly(self, n: int = 1) -> List[bool]:
        week_ends = set()
        if self.dates:
            week_start = self.start
            while week_start <= self.end:
                week_end = week_start.last_day_of_week()
                week_ends.add(week_end)
                week_start = week_end.next_day()
        marks = [d in week_ends for d in self.dates]
        return self._every_nth(marks, n)

    def schedule_action_yearly(self, month: int, day: int) -> List[bool]:
        return [d.month == month and d.day == day for d in self.dates]

    def schedule_action_end_of_year(self, n: int = 1) -> List[bool]:
        marks = [d.is_last_day_of_year() for d in self.dates]
        return self._every_nth(marks, n)

    def schedule_action_final(self) -> List[bool]:
        flags = [False] * self.num_steps
        if flags:
            flags[-1] = True
        return flags

    def schedule_action_date(self, date: Date) -> int:
        """Step index of a date inside the simulated range.

        Raises:
            ValueError: If the date is outside [start, end].
        """
        if not self.start <= date <= self.end:
            raise ValueError(
                f"date {date} outside simulation range {self.start}..{self.end}"
            )
        return self.start.days_until(date)

    def debug_schedule(self, schedule: Union[Sequence[bool], int]) -> List[str]:
        """Render a schedule as '<date>: true/false' lines.

        An integer argument renders a schedule that is true only at that
        step, which is handy for checking where a date lands.
        """
        if isinstance(schedule, int):
            flags = [step == schedule for step in range(self.num_steps)]
        else:
            flags = list(schedule)
        lines = [
            f"{date}: {'true' if flag else 'false'}"
            for date, flag in zip(self.dates, flags)
        ]
        for line in lines:
            LOGGER.debug(line)
        return lines


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def build_schedule(start: Date, end: Date, rule: FrequencyRule) -> List[bool]:
    """One flag per day of [start, end] for the given rule."""
    return Scheduler(start, end).schedule(rule)


FREQUENCY_STRINGS = ("day", "week", "month", "year", "every_n_steps", "final_step")


def rule_from_string(frequency: str, n: int = 1) -> FrequencyRule:
    """Translate a configuration frequency string into a rule.

    'day', 'week', 'month' and 'year' run at the end of every n-th such
    period ('day' with n > 1 is the same as 'every_n_steps').

    Raises:
        ConfigurationError: For an unknown frequency string or n < 1.
    """
    if n < 1:
        raise ConfigurationError(f"frequency_n must be >= 1, got {n}")
    if frequency == "day":
        return FrequencyRule.every_n_days(n) if n > 1 else FrequencyRule.daily()
    if frequency == "week":
        return FrequencyRule.weekly(n)
    if frequency == "month":
        return FrequencyRule.monthly(n)
    if frequency == "year":
        return FrequencyRule.end_of_year(n)
    if frequency == "every_n_steps":
        return FrequencyRule.every_n_days(n)
    if frequency == "final_step":
        return FrequencyRule.final_day()
    raise ConfigurationError(
        f"unknown frequency '{frequency}', expected one of {FREQUENCY_STRINGS}"
    )


def schedule_from_string(scheduler: Scheduler, frequency: str, n: int = 1) -> List[bool]:
    return scheduler.schedule(rule_from_string(frequency, n))


def get_number_of_scheduled_actions(schedule: Sequence[bool]) -> int:
    return sum(1 for flag in schedule if flag)


def simulation_step_to_action_step(schedule: Sequence[bool], step: int) -> int:
    """Index of the action that runs at a simulation step.

    Counts the true entries before step. The caller is expected to ask only
    about steps where the schedule is true.
    """
    return sum(1 for flag in schedule[:step] if flag)
