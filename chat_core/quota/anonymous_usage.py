"""匿名用户配额。

两层限制，同时满足才允许发送：

1. 每日计数：到达固定边界（次日 ``reset_hour`` 点，本地时间）时整体清零，不做部分衰减。
2. 突发限速：滑动窗口内最多 ``burst_limit`` 条。

编排层只把它当作一个布尔闸门使用，阈值与重置时间完全由这里决定。
"""

import json
from collections import deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Deque, Optional

from chat_core.config.settings import settings
from chat_core.domain.models import UsageStats
from chat_core.infrastructure.logging.logger import logger


Clock = Callable[[], datetime]


class AnonymousQuota:
    def __init__(
        self,
        daily_limit: Optional[int] = None,
        burst_limit: Optional[int] = None,
        burst_window_seconds: Optional[float] = None,
        reset_hour: Optional[int] = None,
        state_path: str | Path | None = None,
        clock: Optional[Clock] = None,
    ):
        self.daily_limit = daily_limit if daily_limit is not None else settings.anonymous_daily_limit
        self.burst_limit = burst_limit if burst_limit is not None else settings.anonymous_burst_limit
        self.burst_window = timedelta(
            seconds=burst_window_seconds
            if burst_window_seconds is not None
            else settings.anonymous_burst_window_seconds
        )
        self.reset_hour = reset_hour if reset_hour is not None else settings.quota_reset_hour
        state = state_path if state_path is not None else settings.quota_state_file
        self._state_path = Path(state) if state else None
        self._clock: Clock = clock or datetime.now

        self._used = 0
        self._reset_at = self._next_boundary(self._clock())
        self._recent: Deque[datetime] = deque()
        self._load()
        self._check_reset()

    def can_send(self) -> bool:
        self._check_reset()
        if self._used >= self.daily_limit:
            return False
        self._prune_burst()
        return len(self._recent) < self.burst_limit

    def record(self) -> bool:
        """记录一次发送；已达上限时不计数并返回 False。"""
        if not self.can_send():
            return False
        self._used += 1
        self._recent.append(self._clock())
        self._save()
        return True

    def stats(self) -> UsageStats:
        self._check_reset()
        return UsageStats(used=self._used, limit=self.daily_limit, window_reset_at=self._reset_at)

    def remaining(self) -> int:
        return self.stats().remaining

    # ---- 内部状态 ----

    def _next_boundary(self, now: datetime) -> datetime:
        boundary = (now + timedelta(days=1)).replace(hour=self.reset_hour, minute=0, second=0, microsecond=0)
        return boundary

    def _check_reset(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            self._used = 0
            self._recent.clear()
            self._reset_at = self._next_boundary(now)
            self._save()

    def _prune_burst(self) -> None:
        cutoff = self._clock() - self.burst_window
        while self._recent and self._recent[0] <= cutoff:
            self._recent.popleft()

    def _load(self) -> None:
        if not self._state_path or not self._state_path.exists():
            return
        try:
            data = json.loads(self._state_path.read_text(encoding="utf-8"))
            self._used = max(0, int(data.get("message_count", 0)))
            self._reset_at = datetime.fromisoformat(data["reset_at"])
        except Exception as e:
            logger.warning(
                "Failed to load anonymous usage stats",
                extra={"extra": {"path": str(self._state_path), "error": str(e)}},
            )
            self._used = 0
            self._reset_at = self._next_boundary(self._clock())

    def _save(self) -> None:
        if not self._state_path:
            return
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "message_count": self._used,
                "reset_at": self._reset_at.isoformat(),
                "daily_limit": self.daily_limit,
            }
            self._state_path.write_text(json.dumps(payload), encoding="utf-8")
        except Exception as e:
            logger.warning(
                "Failed to save anonymous usage stats",
                extra={"extra": {"path": str(self._state_path), "error": str(e)}},
            )
