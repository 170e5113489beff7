from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level="TRACE",
    log_file=DISPATCH_LOG_FILE,
    console_level="INFO",
    serialize=LOG_JSON,
)

import argparse
import asyncio
import signal
import sys

import metrics  # 注册指标事件处理器
import storage.db_config as db_config
import world.dispatch_loop as dispatch_loop
from admin.http_server import main_loop as admin_http_main
from core.orchestrator import DispatchOrchestrator
from errors import ConfigurationError
from gcal.service import FreeBusyService
from storage.store import SqliteDispatchStore

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) 与 SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _build_orchestrator(store: SqliteDispatchStore) -> DispatchOrchestrator:
    """根据配置创建各通道, 已启用但缺少凭据的通道会抛出 ConfigurationError"""
    email = web_push = fcm = calendar = None

    if ENABLE_EMAIL:
        from channels.email_resend import ResendEmailTransport
        email = ResendEmailTransport()
    else:
        logger.warning("邮件通道已禁用")

    if ENABLE_WEB_PUSH:
        from channels.web_push import VapidWebPushTransport
        web_push = VapidWebPushTransport()
    else:
        logger.warning("Web Push 通道已禁用")

    if ENABLE_FCM:
        from channels.fcm import FirebaseFcmTransport
        fcm = FirebaseFcmTransport()
    else:
        logger.warning("FCM 通道已禁用")

    if ENABLE_GOOGLE_CALENDAR:
        from gcal.client import GoogleFreeBusyClient
        calendar = FreeBusyService(store, GoogleFreeBusyClient())
    else:
        logger.info("未启用 Google 日历实时查询, 日历忙碌判定只使用已有缓存")

    return DispatchOrchestrator(store, email=email, web_push=web_push, fcm=fcm, calendar=calendar)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="提醒通知调度服务")
    parser.add_argument("--once", action="store_true", help="执行一轮调度后退出 (供外部 cron 调用)")
    parser.add_argument("--db", default=DB_PATH, help=f"数据库路径, 默认 {DB_PATH}")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    store = SqliteDispatchStore()
    try:
        orchestrator = _build_orchestrator(store)
    except ConfigurationError as e:
        logger.critical(f"配置错误: {e}")
        return 1

    await db_config.init_db(args.db)

    try:
        if args.once:
            result = await dispatch_loop.run_once(orchestrator)
            logger.info(f"单次调度结束: processed={result.processed}")
            return 0

        # 注册信号处理器
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        tasks = [admin_http_main(shutdown_event, store, orchestrator)]
        if ENABLE_DISPATCH_LOOP:
            tasks.append(dispatch_loop.main_loop(shutdown_event, orchestrator))
        else:
            logger.warning("调度主循环已禁用, 需要外部 cron 调用 /api/cron/dispatch-notifications")

        await asyncio.gather(*tasks)
        return 0
    finally:
        logger.info("关闭通道连接...")
        await orchestrator.aclose()
        logger.info("关闭数据库连接...")
        await db_config.close_db()
        logger.info("调度服务已关闭")


if __name__ == "__main__":
    logger.info("启动调度服务...")
    sys.exit(asyncio.run(main()))
