"""
邮件日志原始条目模型 (Raw Mail Log Entry Model)

定义 Postfix/OpenDKIM 原始日志行的表结构。每一行日志在导入时解析为
时间、主机、服务、进程号和内容，原样保存以便检索和回溯。

Defines the table structure for raw Postfix/OpenDKIM log lines. Each line is parsed
into timestamp, host, service, process id and content at import time and stored
verbatim for search and traceability.
"""
from datetime import datetime

from sqlalchemy import BigInteger, Integer, String, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class MailLog(Base):
    """
    邮件日志表 (Mail Log Table)

    line_hash 为日志行自然键（时间+主机+服务+进程号+内容）的 SHA-256 摘要，
    唯一约束保证同一物理日志行重复导入时不会产生重复记录。

    line_hash is the SHA-256 digest of the natural key (timestamp+host+service+pid+content);
    its unique constraint keeps re-imports of the same physical line from creating duplicates.
    """
    __tablename__ = "mail_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    log_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)  # 日志产生时间 (Log Timestamp)
    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)  # 主机名 (Hostname)
    service: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)  # 服务名，如 postfix/smtp (Service Name)
    process_id: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 进程号 (Process ID)
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)  # Postfix 队列 ID (Queue ID)
    content: Mapped[str] = mapped_column(Text, nullable=False)  # 日志内容 (Log Content)
    line_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # 自然键摘要 (Natural Key Digest)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())  # 记录创建时间 (Record Creation Time)
