"""
邮件投递记录相关请求/响应模型

定义投递记录搜索和详情 API 的数据结构。
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from app.schemas.mail_log import MailLogResponse


class EmailRecordResponse(BaseModel):
    """投递记录查询响应体。"""
    id: int
    transaction_id: str
    log_date: datetime
    sender: str | None = None
    recipient: str | None = None
    size: int | None = None
    relay: str | None = None
    delay: Decimal | None = None
    status: str | None = None
    dsn_code: str | None = None
    response_text: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EmailRecordSearchResponse(BaseModel):
    """投递记录搜索分页响应体。"""
    items: list[EmailRecordResponse]
    total: int
    page: int
    page_size: int


class EmailRecordDetailResponse(EmailRecordResponse):
    """投递记录详情，附带同一队列 ID 的原始日志行。"""
    logs: list[MailLogResponse] = []
