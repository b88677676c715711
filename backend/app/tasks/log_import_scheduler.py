"""
日志定时导入任务模块。

启动后先执行一次导入，之后按固定间隔（默认每小时，IMPORT_INTERVAL_SECONDS 可配置）
触发导入。与手动触发共享同一个导入器实例，导入进行中时本次触发会被丢弃。
单次导入失败只记录日志，等待下一个周期重试（检查点即重试游标）。
"""
import asyncio
import logging
from typing import Optional

from app.core.config import settings
from app.services.log_importer import ImportStatus, LogImporter, log_importer

logger = logging.getLogger(__name__)


async def run_scheduled_import(importer: LogImporter, timeout: Optional[float] = None) -> None:
    """执行一次定时导入并记录结果。"""
    result = await importer.run(trigger="scheduled", timeout=timeout)
    if result.status == ImportStatus.FAILED:
        logger.warning(f"Scheduled log import failed, will retry next tick: {result.error}")
    elif result.status == ImportStatus.SKIPPED:
        logger.info("Scheduled log import skipped, another import is in progress")


async def log_import_loop(
    importer: Optional[LogImporter] = None,
    interval_seconds: Optional[int] = None,
    run_on_start: Optional[bool] = None,
):
    """日志导入后台循环。"""
    importer = importer or log_importer
    if interval_seconds is None:
        interval_seconds = settings.import_interval_seconds
    if run_on_start is None:
        run_on_start = settings.import_on_startup

    logger.info(f"Log import scheduler started, interval {interval_seconds}s")
    if not run_on_start:
        await asyncio.sleep(interval_seconds)
    while True:
        try:
            await run_scheduled_import(importer, settings.import_timeout_seconds)
        except Exception:
            logger.exception("Error in log import scheduler")
        await asyncio.sleep(interval_seconds)
