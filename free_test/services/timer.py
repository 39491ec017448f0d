"""
services/timer.py

응시 시간 계산과 주기 호출.
시험 제한 시간: 기본 45분 (2700초).

경과 시간은 시작 시각과 현재 시각의 차이로 매번 계산하는 파생 값이라
따로 멈출 필요가 없다. 다만 주기 작업(TimerRefresher, 예: 앱의 마감 확인 루프)은
종료할 때 반드시 stop() 해야 한다.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

TEST_DURATION_SECONDS = 45 * 60
WARNING_THRESHOLD_SECONDS = 5 * 60


def elapsed(start_time: float, now: float) -> float:
    return max(0.0, now - start_time)


def format_clock(seconds: float) -> str:
    """초 → 'MM:SS'."""
    total = max(0, int(seconds))
    minutes = total // 60
    secs = total % 60
    return f"{minutes:02d}:{secs:02d}"


TickCallback = Callable[[], Union[None, Awaitable[None]]]


class TimerRefresher:
    """
    interval 초마다 callback 을 호출하는 asyncio 작업.

    start() 는 실행 중인 이벤트 루프 안에서 호출해야 한다.
    stop() 이후에는 callback 이 더 이상 호출되지 않는다.
    """

    def __init__(self, callback: TickCallback, interval: float = 1.0):
        self._callback = callback
        self._interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("타이머 갱신 콜백 오류")
