"""
邮件投递记录模型 (Email Delivery Record Model)

按 Postfix 队列 ID 聚合多条日志得到的投递视图：发件人和大小来自 qmgr，
收件人、中继、延迟、状态、DSN 和响应文本来自 smtp。

Delivery view correlated from several log lines sharing one Postfix queue id:
sender and size come from qmgr; recipient, relay, delay, status, DSN and
response text come from smtp.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Integer, Numeric, String, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class EmailRecord(Base):
    """
    邮件投递记录表 (Email Delivery Record Table)

    以 transaction_id 为唯一键做幂等 upsert；跨批次导入时非空的新值覆盖旧值，空值不覆盖。

    Upserted idempotently by transaction_id; across imports a non-null incoming
    value replaces the stored one, a null never does.
    """
    __tablename__ = "email_records"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)  # Postfix 队列 ID (Queue ID)
    log_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)  # 首次出现时间 (First Seen At)
    sender: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)  # 发件人 (Sender)
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)  # 收件人 (Recipient)
    size: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 邮件大小（字节） (Size in Bytes)
    relay: Mapped[str | None] = mapped_column(String(255), nullable=True)  # 中继主机 (Relay)
    delay: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)  # 投递延迟（秒） (Delay in Seconds)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)  # 状态：sent/bounced/deferred (Status)
    dsn_code: Mapped[str | None] = mapped_column(String(20), nullable=True)  # DSN 状态码 (DSN Code)
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)  # 远端响应文本 (Remote Response Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())  # 记录创建时间 (Record Creation Time)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())  # 更新时间 (Update Time)
