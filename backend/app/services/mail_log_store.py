"""
邮件日志持久化服务 (Mail Log Persistence Service)

将原始日志条目和聚合后的投递记录幂等写入数据库：
1. 原始日志按自然键摘要 insert-if-absent，重复导入同一行静默忽略
2. 投递记录按队列 ID upsert，逐字段 COALESCE(新值, 旧值)：非空新值覆盖，空值不覆盖

按批次写入以保证性能；某一批次因单条记录出错（唯一约束冲突、数据越界）失败时，
回滚该批次并逐条重试，定位并跳过出错记录，其余记录照常写入。
连接类错误（数据库不可用）不在此处吞掉，直接向上抛出由导入流程判定为失败。

Writes raw entries and correlated delivery records idempotently. Rows are
written in chunks; a chunk that fails on a record-level error is rolled back
and retried row by row so only the offending record is skipped. Connection
level errors propagate to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence

from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.email_record import EmailRecord
from app.models.mail_log import MailLog
from app.services.correlator import MERGEABLE_FIELDS, DeliveryRecord
from app.services.log_parser import LogEntry

logger = logging.getLogger(__name__)

# 单批次写入条数
BATCH_SIZE = 500

# 单条记录级别的错误，可跳过该记录继续
RECORD_ERRORS = (IntegrityError, DataError)


@dataclass
class EntryPersistResult:
    """原始日志写入统计。"""
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0


@dataclass
class DeliveryPersistResult:
    """投递记录写入统计。"""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class MailLogStore:
    """邮件日志持久化服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── 原始日志 ─────────────────────────────────────────────────────

    async def persist_entries(self, entries: Sequence[LogEntry]) -> EntryPersistResult:
        """
        写入原始日志条目，已存在的条目（同一自然键）静默跳过

        Args:
            entries: 本批次解析出的日志条目（文件顺序）

        Returns:
            EntryPersistResult: 新增、重复、失败条数
        """
        result = EntryPersistResult()
        rows: List[MailLog] = []
        seen: set[str] = set()
        for entry in entries:
            key = entry.natural_key
            if key in seen:
                result.duplicates += 1
                continue
            seen.add(key)
            log_date = entry.occurred_at
            if log_date is None:
                logger.warning(
                    f"Skipping log entry with unparseable timestamp {entry.timestamp!r}: "
                    f"{entry.service}[{entry.process_id}] {entry.content[:120]}"
                )
                result.failed += 1
                continue
            rows.append(MailLog(
                log_date=log_date,
                hostname=entry.hostname,
                service=entry.service,
                process_id=entry.process_id,
                transaction_id=entry.transaction_id,
                content=entry.content,
                line_hash=key,
            ))

        for chunk in _chunks(rows, BATCH_SIZE):
            existing = await self._existing_hashes([row.line_hash for row in chunk])
            new_rows = [row for row in chunk if row.line_hash not in existing]
            result.duplicates += len(chunk) - len(new_rows)
            if not new_rows:
                continue
            try:
                self.db.add_all(new_rows)
                await self.db.commit()
                result.inserted += len(new_rows)
            except RECORD_ERRORS as e:
                await self.db.rollback()
                logger.warning(f"Batch insert of {len(new_rows)} log entries failed, retrying one by one: {e}")
                await self._insert_entries_one_by_one(new_rows, result)
        return result

    async def _existing_hashes(self, hashes: List[str]) -> set[str]:
        rows = await self.db.execute(select(MailLog.line_hash).where(MailLog.line_hash.in_(hashes)))
        return set(rows.scalars().all())

    async def _insert_entries_one_by_one(self, rows: List[MailLog], result: EntryPersistResult) -> None:
        for row in rows:
            # 回滚后对象已脱离会话，重新构造
            fresh = MailLog(
                log_date=row.log_date,
                hostname=row.hostname,
                service=row.service,
                process_id=row.process_id,
                transaction_id=row.transaction_id,
                content=row.content,
                line_hash=row.line_hash,
            )
            try:
                self.db.add(fresh)
                await self.db.commit()
                result.inserted += 1
            except IntegrityError:
                # 并发或批内重复写入，视为已存在
                await self.db.rollback()
                result.duplicates += 1
            except DataError as e:
                await self.db.rollback()
                result.failed += 1
                logger.error(
                    f"Error inserting log entry {row.service}[{row.process_id}] "
                    f"at {row.log_date.isoformat()}: {e}"
                )

    # ── 投递记录 ─────────────────────────────────────────────────────

    async def persist_deliveries(self, records: Dict[str, DeliveryRecord]) -> DeliveryPersistResult:
        """
        按队列 ID upsert 投递记录

        没有发件人也没有收件人的记录不具备邮件标识信息，直接跳过。
        已存在的记录逐字段合并：新值非空则覆盖，为空则保留原值；
        首次出现时间取两者中较早的一个。

        Args:
            records: 队列 ID 到聚合投递记录的映射

        Returns:
            DeliveryPersistResult: 新增、更新、跳过、失败条数
        """
        result = DeliveryPersistResult()
        candidates = [r for r in records.values() if r.is_identifiable]
        result.skipped = len(records) - len(candidates)

        for chunk in _chunks(candidates, BATCH_SIZE):
            inserted = updated = 0
            try:
                existing = await self._existing_records([r.transaction_id for r in chunk])
                for record in chunk:
                    row = existing.get(record.transaction_id)
                    if row is None:
                        self.db.add(self._new_record(record))
                        inserted += 1
                    else:
                        self._merge_into(row, record)
                        updated += 1
                await self.db.commit()
                result.inserted += inserted
                result.updated += updated
            except RECORD_ERRORS as e:
                await self.db.rollback()
                logger.warning(f"Batch upsert of {len(chunk)} email records failed, retrying one by one: {e}")
                for record in chunk:
                    await self._upsert_one(record, result)
        return result

    async def _existing_records(self, transaction_ids: List[str]) -> Dict[str, EmailRecord]:
        rows = await self.db.execute(
            select(EmailRecord).where(EmailRecord.transaction_id.in_(transaction_ids))
        )
        return {row.transaction_id: row for row in rows.scalars().all()}

    async def _upsert_one(self, record: DeliveryRecord, result: DeliveryPersistResult) -> None:
        try:
            existing = await self._existing_records([record.transaction_id])
            row = existing.get(record.transaction_id)
            if row is None:
                self.db.add(self._new_record(record))
            else:
                self._merge_into(row, record)
            await self.db.commit()
            if row is None:
                result.inserted += 1
            else:
                result.updated += 1
        except RECORD_ERRORS as e:
            await self.db.rollback()
            result.failed += 1
            logger.error(
                f"Error upserting email record {record.transaction_id} "
                f"(from={record.sender!r}, to={record.recipient!r}): {e}"
            )

    @staticmethod
    def _new_record(record: DeliveryRecord) -> EmailRecord:
        values = {key: getattr(record, key) for key in MERGEABLE_FIELDS}
        return EmailRecord(
            transaction_id=record.transaction_id,
            log_date=record.first_seen_at or datetime.now(timezone.utc),
            **values,
        )

    @staticmethod
    def _merge_into(row: EmailRecord, record: DeliveryRecord) -> None:
        """COALESCE(新值, 旧值)：非空新值覆盖已存储的值。"""
        for key in MERGEABLE_FIELDS:
            value = getattr(record, key)
            if value is not None:
                setattr(row, key, value)
        if record.first_seen_at is not None:
            stored = row.log_date
            if stored is not None and stored.tzinfo is None:
                # SQLite 等后端返回无时区时间，按 UTC 比较
                stored = stored.replace(tzinfo=timezone.utc)
            if stored is None or record.first_seen_at < stored:
                row.log_date = record.first_seen_at
