"""
事务关联模块 (Transaction Correlation Module)

按 Postfix 队列 ID 将同一批次中的多条日志合并为一条投递记录。
批次内按文件顺序合并，后出现的非空字段覆盖先前的值（如重试后的第二个 status=）。

Groups log entries of one import run by Postfix queue id and merges their
extracted fields into one delivery record per id. Within a run a later
non-null value overwrites an earlier one (e.g. a second status= after a retry).
"""
from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from app.services.log_parser import LogEntry, extract_fields

# 可合并的投递字段
MERGEABLE_FIELDS = (
    "sender",
    "recipient",
    "size",
    "relay",
    "delay",
    "status",
    "dsn_code",
    "response_text",
)


@dataclass
class DeliveryRecord:
    """单个队列 ID 在一次导入中的聚合投递视图。"""
    transaction_id: str
    first_seen_at: Optional[datetime] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    size: Optional[int] = None
    relay: Optional[str] = None
    delay: Optional[Decimal] = None
    status: Optional[str] = None
    dsn_code: Optional[str] = None
    response_text: Optional[str] = None
    entry_count: int = 0

    @property
    def is_identifiable(self) -> bool:
        """至少有发件人或收件人时才具备邮件标识信息（空发件人 "" 也算）。"""
        return self.sender is not None or self.recipient is not None

    def merge(self, values: Dict[str, Any]) -> None:
        """合并一条日志提取出的字段，非空新值覆盖旧值。"""
        for key in MERGEABLE_FIELDS:
            value = values.get(key)
            if value is not None:
                setattr(self, key, value)

    def observe(self, occurred_at: Optional[datetime]) -> None:
        """记录一条贡献日志，维护最早出现时间。"""
        self.entry_count += 1
        if occurred_at is not None and (self.first_seen_at is None or occurred_at < self.first_seen_at):
            self.first_seen_at = occurred_at

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)}


def correlate(entries: Iterable[LogEntry]) -> Dict[str, DeliveryRecord]:
    """
    按队列 ID 关联日志条目 (Correlate entries by transaction id)

    内容开头没有队列 ID 的条目不参与关联（仍作为原始日志保存）。
    返回的字典按队列 ID 首次出现的顺序排列。

    Args:
        entries: 按文件顺序排列的本批次日志条目

    Returns:
        Dict[str, DeliveryRecord]: 队列 ID 到聚合投递记录的映射
    """
    records: Dict[str, DeliveryRecord] = {}
    for entry in entries:
        transaction_id = entry.transaction_id
        if transaction_id is None:
            continue
        record = records.get(transaction_id)
        if record is None:
            record = DeliveryRecord(transaction_id=transaction_id)
            records[transaction_id] = record
        record.observe(entry.occurred_at)
        record.merge(extract_fields(entry.service, entry.content))
    return records
