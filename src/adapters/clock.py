from datetime import UTC, datetime, timedelta


class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class FrozenClock:
    """Clock pinned to a moment; tick() moves it forward by whole milliseconds."""

    def __init__(self, moment: datetime):
        self._moment = moment

    def now_utc(self) -> datetime:
        return self._moment

    def tick(self, milliseconds: int = 1) -> datetime:
        self._moment = self._moment + timedelta(milliseconds=milliseconds)
        return self._moment
