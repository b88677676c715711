"""
日志导入服务 (Log Import Service)

编排一次完整的 Postfix 日志导入：读取检查点与日志文件 → 逐行解析 → 按队列 ID 关联 →
幂等写入原始日志和投递记录 → 保存检查点并截断已消费部分 → 发送完成事件。

状态机：IDLE → READING → PARSING → CORRELATING → PERSISTING → FINALIZING → IDLE，
任一步骤出现异常进入 FAILED 后回到 IDLE，此时检查点保持不变，下次触发从同一位置重试。
同一时刻只允许一次导入，导入进行中收到的触发直接丢弃（不排队）。

Orchestrates one import run. At most one run executes at a time; a trigger
arriving while a run is in progress is dropped. The checkpoint is only written
by a successful finalizing step (or when the source is found empty).
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import async_session
from app.services.checkpoint import Checkpoint, CheckpointStore
from app.services.correlator import correlate
from app.services.import_broadcaster import (
    COMPLETE,
    ERROR,
    PROGRESS,
    WARNING,
    ImportEvent,
    ImportEventSink,
    import_broadcaster,
)
from app.services.log_parser import LogEntry, parse_line
from app.services.mail_log_store import MailLogStore

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    """导入状态机状态。"""
    IDLE = "idle"
    READING = "reading"
    PARSING = "parsing"
    CORRELATING = "correlating"
    PERSISTING = "persisting"
    FINALIZING = "finalizing"
    FAILED = "failed"


class ImportStatus(str, Enum):
    """单次导入的结果。"""
    COMPLETED = "completed"
    SKIPPED = "skipped"  # 已有导入在进行中
    NO_SOURCE = "no_source"  # 日志文件不存在
    EMPTY = "empty"  # 日志文件为空
    FAILED = "failed"


@dataclass
class ImportResult:
    """单次导入的统计结果。"""
    status: ImportStatus = ImportStatus.COMPLETED
    trigger: str = "manual"
    lines_read: int = 0
    entries_parsed: int = 0
    parse_errors: int = 0
    entries_inserted: int = 0
    entries_duplicate: int = 0
    entries_failed: int = 0
    records_upserted: int = 0
    records_failed: int = 0
    truncated: bool = False
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.status not in (ImportStatus.FAILED, ImportStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class SourceSnapshot:
    """一次读取得到的日志文件快照，只包含以换行结尾的完整行。"""
    size: int
    total_lines: int
    consumed_bytes: int
    new_lines: List[bytes]


def read_source(path: Path, line_index: int) -> SourceSnapshot:
    """
    读取日志文件中检查点之后的完整行。

    末尾未以换行结尾的半行视为仍在写入中，本次不消费。
    检查点超出当前文件行数（文件被外部轮转为更短的非空文件）时从第 0 行重新读取。
    文件不存在时抛出 FileNotFoundError。
    """
    data = path.read_bytes()
    lines = data.splitlines(keepends=True)
    partial = b""
    if lines and not lines[-1].endswith((b"\n", b"\r")):
        partial = lines.pop()
    total = len(lines)
    if line_index > total:
        logger.warning(
            f"Checkpoint line {line_index} is beyond the {total} lines of {path}, "
            f"file was rotated externally; reading from line 0"
        )
        line_index = 0
    return SourceSnapshot(
        size=len(data),
        total_lines=total,
        consumed_bytes=len(data) - len(partial),
        new_lines=lines[line_index:],
    )


def truncate_consumed(path: Path, consumed_bytes: int) -> int:
    """
    截掉文件开头已消费的字节，保留读取之后追加的内容和末尾半行。

    Returns:
        int: 截断后文件剩余字节数
    """
    with open(path, "r+b") as f:
        f.seek(0, 2)
        size = f.tell()
        if size < consumed_bytes:
            raise RuntimeError(
                f"{path} shrank from {consumed_bytes} to {size} bytes during import, refusing to truncate"
            )
        f.seek(consumed_bytes)
        tail = f.read()
        f.seek(0)
        f.write(tail)
        f.truncate(len(tail))
    return len(tail)


class LogImporter:
    """
    日志导入编排器

    所有可变状态（当前状态、最近结果）属于实例本身，检查点由 CheckpointStore 持久化。
    """

    def __init__(
        self,
        log_file: str | Path,
        checkpoint_store: CheckpointStore,
        session_factory: async_sessionmaker[AsyncSession],
        sink: Optional[ImportEventSink] = None,
        truncate_after_import: bool = True,
    ):
        self.log_file = Path(log_file)
        self.checkpoint_store = checkpoint_store
        self.session_factory = session_factory
        self.sink = sink
        self.truncate_after_import = truncate_after_import
        self.state = ImportState.IDLE
        self.last_result: Optional[ImportResult] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self, trigger: str = "manual", timeout: Optional[float] = None) -> ImportResult:
        """
        执行一次导入

        Args:
            trigger: 触发来源（manual / scheduled / cli），仅用于日志和事件
            timeout: 读取到写入阶段的截止时间（秒），超时则本次导入失败，检查点不推进

        Returns:
            ImportResult: 导入结果；已有导入进行中时返回 SKIPPED
        """
        if self._lock.locked():
            logger.info(f"Log import already in progress, dropping {trigger} trigger")
            return ImportResult(
                status=ImportStatus.SKIPPED,
                trigger=trigger,
                error="Log import already in progress",
                finished_at=datetime.now(timezone.utc),
            )
        async with self._lock:
            result = await self._run(trigger, timeout)
            self.last_result = result
            return result

    async def _run(self, trigger: str, timeout: Optional[float]) -> ImportResult:
        result = ImportResult(trigger=trigger)
        await self._progress(f"Starting log import from {self.log_file} ({trigger})")
        try:
            try:
                snapshot = await asyncio.wait_for(self._ingest(result), timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f"Log import timed out after {timeout}s") from None
            if snapshot is not None:
                await self._finalize(snapshot, result)
        except Exception as e:
            failed_in = self.state
            self.state = ImportState.FAILED
            result.status = ImportStatus.FAILED
            result.error = str(e) or e.__class__.__name__
            logger.exception(f"Log import failed while {failed_in.value}: {result.error}")
            await self._publish(ERROR, f"Log import failed while {failed_in.value}: {result.error}")
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self.state = ImportState.IDLE
        await self._publish(COMPLETE, f"Log import {result.status.value}", result.to_dict())
        return result

    async def _ingest(self, result: ImportResult) -> Optional[SourceSnapshot]:
        """读取、解析、关联并写入；无需继续时返回 None。"""
        self.state = ImportState.READING
        checkpoint = await asyncio.to_thread(self.checkpoint_store.load)
        try:
            snapshot = await asyncio.to_thread(read_source, self.log_file, checkpoint.line_index)
        except FileNotFoundError:
            result.status = ImportStatus.NO_SOURCE
            await self._warn(f"Log file not found: {self.log_file}")
            return None

        if snapshot.size == 0:
            await asyncio.to_thread(
                self.checkpoint_store.save, Checkpoint(last_processed_at=datetime.now(timezone.utc))
            )
            result.status = ImportStatus.EMPTY
            await self._progress("Log file is empty, checkpoint reset to line 0")
            return None

        self.state = ImportState.PARSING
        result.lines_read = len(snapshot.new_lines)
        entries: List[LogEntry] = []
        for raw in snapshot.new_lines:
            line = raw.decode("utf-8", errors="replace")
            if not line.strip():
                continue
            entry = parse_line(line)
            if entry is None:
                result.parse_errors += 1
                logger.debug(f"Unparseable log line: {line.rstrip()[:200]}")
                continue
            entries.append(entry)
        result.entries_parsed = len(entries)
        await self._progress(
            f"Parsed {len(entries)} entries from {result.lines_read} new lines "
            f"({result.parse_errors} unparseable)"
        )

        self.state = ImportState.CORRELATING
        records = correlate(entries)
        await self._progress(f"Correlated {len(records)} transactions")

        self.state = ImportState.PERSISTING
        async with self.session_factory() as db:
            store = MailLogStore(db)
            entry_result = await store.persist_entries(entries)
            result.entries_inserted = entry_result.inserted
            result.entries_duplicate = entry_result.duplicates
            result.entries_failed = entry_result.failed
            await self._progress(
                f"Stored {entry_result.inserted} log entries "
                f"({entry_result.duplicates} already present, {entry_result.failed} failed)"
            )
            delivery_result = await store.persist_deliveries(records)
            result.records_upserted = delivery_result.upserted
            result.records_failed = delivery_result.failed
            await self._progress(
                f"Upserted {delivery_result.upserted} email records "
                f"({delivery_result.inserted} new, {delivery_result.updated} updated, "
                f"{delivery_result.skipped} without sender/recipient, {delivery_result.failed} failed)"
            )
        return snapshot

    async def _finalize(self, snapshot: SourceSnapshot, result: ImportResult) -> None:
        """
        保存检查点，并在有新写入时截断已消费内容。

        检查点先于截断写入：截断失败或中断时下次从第 0 行重读，重复行由幂等写入吸收。
        """
        self.state = ImportState.FINALIZING
        truncate = result.entries_inserted > 0 and self.truncate_after_import
        checkpoint = Checkpoint(
            line_index=0 if truncate else snapshot.total_lines,
            last_processed_at=datetime.now(timezone.utc),
            entries_inserted=result.entries_inserted,
            records_upserted=result.records_upserted,
            parse_errors=result.parse_errors,
        )
        await asyncio.to_thread(self.checkpoint_store.save, checkpoint)

        if truncate:
            remaining = await asyncio.to_thread(truncate_consumed, self.log_file, snapshot.consumed_bytes)
            result.truncated = True
            await self._progress(f"Truncated log file ({remaining} bytes written during import kept)")
        result.status = ImportStatus.COMPLETED
        await self._progress(
            f"Imported {result.entries_inserted} log entries and {result.records_upserted} email records"
        )

    async def _progress(self, message: str) -> None:
        logger.info(message)
        await self._publish(PROGRESS, message)

    async def _warn(self, message: str) -> None:
        logger.warning(message)
        await self._publish(WARNING, message)

    async def _publish(self, kind: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        if self.sink is not None:
            await self.sink.publish(ImportEvent(kind=kind, message=message, data=data or {}))


# 全局导入器实例，API 手动触发与定时任务共享同一把锁
log_importer = LogImporter(
    log_file=settings.log_file,
    checkpoint_store=CheckpointStore(settings.state_file),
    session_factory=async_session,
    sink=import_broadcaster,
    truncate_after_import=settings.truncate_after_import,
)


def get_log_importer() -> LogImporter:
    """FastAPI 依赖项：获取全局导入器实例。"""
    return log_importer
