"""进程内的调度循环

每隔 DISPATCH_INTERVAL_SECONDS 执行一轮调度; cron 接口与循环共用同一把锁,
同一进程内不会出现两轮调度同时运行。
"""

from logger import logger
from datamodel import *
from core.orchestrator import DispatchOrchestrator
from config.settings import DISPATCH_INTERVAL_SECONDS
import asyncio
import time

__shutdown_event: asyncio.Event | None = None
__last_run_at_epoch: float | None = None
__last_result: DispatchResult | None = None
__run_count: int = 0
__dispatch_lock = asyncio.Lock()


def get_status() -> dict[str, object]:
    running = __shutdown_event is not None and not __shutdown_event.is_set()
    return {
        "running": running,
        "dispatching": __dispatch_lock.locked(),
        "run_count": __run_count,
        "last_run_at_epoch": __last_run_at_epoch,
        "last_result": __last_result.as_dict() if __last_result is not None else None,
    }


async def run_once(orchestrator: DispatchOrchestrator) -> DispatchResult:
    """执行一轮调度, 已有一轮在运行时等待其结束后再执行"""
    global __last_run_at_epoch, __last_result, __run_count
    async with __dispatch_lock:
        __last_run_at_epoch = time.time()
        result = await orchestrator.run()
        __last_result = result
        __run_count += 1
        return result


async def main_loop(
    shutdown_event: asyncio.Event,
    orchestrator: DispatchOrchestrator,
    interval_seconds: int = DISPATCH_INTERVAL_SECONDS,
) -> None:
    global __shutdown_event
    __shutdown_event = shutdown_event
    logger.info(f"调度主循环已启动, 间隔 {interval_seconds} 秒")

    while not shutdown_event.is_set():
        try:
            await run_once(orchestrator)
        except Exception:
            # 单轮失败不影响后续轮次, 已写入的数据保持不变
            logger.exception("本轮调度失败")

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("调度主循环已关闭")
