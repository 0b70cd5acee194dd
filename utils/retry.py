"""
Composable retry policy (max attempts + exponential backoff + fallback).

Story-world 호출과 프레임 생성 호출 모두 같은 정책 객체를 사용합니다.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from utils.errors import GenerationCancelled
from utils.logger import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class RetryPolicy:
    """
    Retry an async call with exponential backoff, then an optional fallback.

    Delay before retry n (0-based) is ``base_delay * 2 ** n``: 1s, 2s, 4s ...
    No delay follows the final attempt.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        give_up_on: Tuple[Type[BaseException], ...] = (),
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        name: str = "call",
    ):
        """
        Args:
            max_attempts: 총 시도 횟수 (fallback 제외)
            base_delay: 첫 재시도 전 대기 시간 (초)
            retry_on: 재시도 대상 예외 타입
            give_up_on: 재시도 없이 즉시 전파할 예외 타입 (fallback도 생략)
            sleep: 대기 함수 (테스트에서 주입)
            name: 로그 라벨
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_on = retry_on
        self.give_up_on = (GenerationCancelled,) + tuple(give_up_on)
        self.sleep = sleep or asyncio.sleep
        self.name = name

    def backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        fallback: Optional[Callable[[], Awaitable[T]]] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> T:
        """
        Run ``call`` until it succeeds or attempts run out.

        Args:
            call: 매 시도마다 호출되는 코루틴 팩토리
            fallback: 모든 시도 실패 후 1회 실행 (예외는 그대로 전파)
            checkpoint: 각 호출 직전에 실행 (취소 시 GenerationCancelled 발생)

        Returns:
            성공한 호출의 결과
        """
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            if checkpoint:
                checkpoint()
            try:
                return await call()
            except self.give_up_on:
                raise
            except self.retry_on as e:
                last_error = e
                logger.warning(
                    f"[Retry] {self.name} attempt {attempt + 1}/{self.max_attempts} failed: {e}"
                )
                if attempt < self.max_attempts - 1:
                    await self.sleep(self.backoff(attempt))

        if fallback is not None:
            if checkpoint:
                checkpoint()
            logger.warning(f"[Retry] {self.name} exhausted retries, trying fallback")
            return await fallback()

        raise last_error
