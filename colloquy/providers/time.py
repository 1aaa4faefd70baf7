"""TIME provider: current date and time for time-aware responses."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional
from zoneinfo import ZoneInfo

from ..schemas import Memory, ProviderResult, State, utc_now
from .registry import Provider

if TYPE_CHECKING:
    from ..runtime import AgentContext


LOCAL_TIMEZONE = "America/Los_Angeles"


def _human_readable(moment: datetime) -> str:
    # e.g. "Monday, March 3, 2025 at 4:05:09 PM UTC"
    return (
        f"{moment.strftime('%A, %B')} {moment.day}, {moment.year} at "
        f"{moment.strftime('%I').lstrip('0')}:{moment.strftime('%M:%S %p')} {moment.tzname()}"
    )


class TimeProvider(Provider):
    name = "TIME"
    description = "The current date and time"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.clock = clock or utc_now

    async def get(self, context: "AgentContext", message: Memory, state: State) -> ProviderResult:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        utc_time = now.astimezone(timezone.utc)
        local_time = now.astimezone(ZoneInfo(LOCAL_TIMEZONE))

        human_readable = _human_readable(utc_time)
        local_readable = _human_readable(local_time)
        text = (
            f"The current date and time is {human_readable} "
            f"({local_readable} in {LOCAL_TIMEZONE}). "
            "Please use this as your reference for any time-based operations or responses."
        )
        return ProviderResult(
            values={"time": human_readable, "localTime": local_readable},
            data={"time": utc_time},
            text=text,
        )
