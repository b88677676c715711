"""
Postfix 日志解析模块 (Postfix Log Parsing Module)

将单行日志解析为结构化的 LogEntry，并按服务类型提取与邮件投递相关的字段。
日志行格式：``<timestamp> <hostname> <service>[<pid>]: <message>``，例如::

    2026-02-11T09:26:24.771360+01:00 mail postfix/qmgr[1234]: ABC123: from=<a@x.com>, size=512

Parses one raw log line into a structured LogEntry and extracts the
delivery-related fields for known services.
"""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

# 日志行整体格式：时间、主机、服务[进程号]: 内容
LINE_RE = re.compile(r"^(\S+)\s+(\S+)\s+([^\s\[]+)\[(\d+)\]:\s+(.*)$")
# 内容开头的 Postfix 队列 ID
TRANSACTION_ID_RE = re.compile(r"^([A-F0-9]+):")

# 地址字段：尖括号形式（可为空，如 from=<>）或裸值，直到下一个逗号/空白
FROM_RE = re.compile(r"\bfrom=(?:<(?P<bracketed>[^>]*)>|(?P<bare>[^,\s]+))")
TO_RE = re.compile(r"\bto=(?:<(?P<bracketed>[^>]*)>|(?P<bare>[^,\s]+))")
SIZE_RE = re.compile(r"\bsize=(\d+)")
RELAY_RE = re.compile(r"\brelay=([^\s,]+)")
DELAY_RE = re.compile(r"\bdelay=(\d+(?:\.\d+)?)")
DSN_RE = re.compile(r"\bdsn=(\d+(?:\.\d+)*)")
# 响应文本取到最后一个右括号，允许内部嵌套括号
STATUS_RE = re.compile(r"\bstatus=(\w+)(?:\s+\((.*)\))?")

QMGR_SERVICE = "postfix/qmgr"
SMTP_SERVICE = "postfix/smtp"


def _parse_timestamp(value: str) -> Optional[datetime]:
    """将 ISO-8601 时间戳解析为 UTC 时间，无时区时按 UTC 处理，失败返回 None。"""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def extract_transaction_id(content: str) -> Optional[str]:
    """提取内容开头的 Postfix 队列 ID，不存在时返回 None。"""
    m = TRANSACTION_ID_RE.match(content)
    return m.group(1) if m else None


@dataclass(frozen=True)
class LogEntry:
    """单条解析后的日志行。"""
    timestamp: str
    hostname: str
    service: str
    process_id: int
    content: str

    @property
    def occurred_at(self) -> Optional[datetime]:
        return _parse_timestamp(self.timestamp)

    @property
    def transaction_id(self) -> Optional[str]:
        return extract_transaction_id(self.content)

    @property
    def natural_key(self) -> str:
        """日志行自然键的 SHA-256 摘要，用于幂等写入。"""
        identifier = "|".join(
            [self.timestamp, self.hostname, self.service, str(self.process_id), self.content]
        )
        return hashlib.sha256(identifier.encode("utf-8")).hexdigest()


def parse_line(raw_line: str) -> Optional[LogEntry]:
    """
    解析单行日志 (Parse a single log line)

    空行、纯空白行以及不符合 ``timestamp host service[pid]: message`` 格式的行
    （续行、横幅、损坏的条目）返回 None，由调用方计数后跳过。

    Args:
        raw_line: 原始日志行，可带行尾换行符

    Returns:
        Optional[LogEntry]: 解析结果，无法解析时为 None
    """
    line = raw_line.rstrip("\r\n")
    if not line.strip():
        return None
    m = LINE_RE.match(line)
    if not m:
        return None
    timestamp, hostname, service, pid, content = m.groups()
    return LogEntry(
        timestamp=timestamp,
        hostname=hostname,
        service=service,
        process_id=int(pid),
        content=content,
    )


def _address(pattern: re.Pattern, content: str) -> Optional[str]:
    m = pattern.search(content)
    if not m:
        return None
    if m.group("bracketed") is not None:
        return m.group("bracketed")
    return m.group("bare")


def _extract_qmgr(content: str) -> Dict[str, Any]:
    """队列管理器事件：发件人和邮件大小。"""
    fields: Dict[str, Any] = {}
    sender = _address(FROM_RE, content)
    if sender is not None:
        fields["sender"] = sender
    m = SIZE_RE.search(content)
    if m:
        fields["size"] = int(m.group(1))
    return fields


def _extract_smtp(content: str) -> Dict[str, Any]:
    """SMTP 投递事件：收件人、中继、延迟、DSN、状态和响应文本。"""
    fields: Dict[str, Any] = {}
    recipient = _address(TO_RE, content)
    if recipient is not None:
        fields["recipient"] = recipient
    m = RELAY_RE.search(content)
    if m:
        fields["relay"] = m.group(1)
    m = DELAY_RE.search(content)
    if m:
        fields["delay"] = Decimal(m.group(1))
    m = DSN_RE.search(content)
    if m:
        fields["dsn_code"] = m.group(1)
    m = STATUS_RE.search(content)
    if m:
        fields["status"] = m.group(1)
        if m.group(2) is not None:
            fields["response_text"] = m.group(2)
    return fields


# 按服务名精确分发的字段提取器
EXTRACTORS: Dict[str, Callable[[str], Dict[str, Any]]] = {
    QMGR_SERVICE: _extract_qmgr,
    SMTP_SERVICE: _extract_smtp,
}


def extract_fields(service: str, content: str) -> Dict[str, Any]:
    """
    按服务类型提取投递字段 (Extract delivery fields by service)

    未观察到的字段直接省略而不是置为空字符串，下游合并据此区分
    "本次未出现" 与 "出现但为空"（如 ``from=<>`` 退信的空发件人）。
    未知服务返回空字典，该行仍作为原始日志保存。

    Absent fields are omitted rather than set to "", so merging can tell
    "not observed" from "observed as empty".
    """
    extractor = EXTRACTORS.get(service)
    if extractor is None:
        return {}
    return extractor(content)
