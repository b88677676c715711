"""
邮件日志相关请求/响应模型

定义原始日志搜索 API 的数据结构。
"""
from datetime import datetime

from pydantic import BaseModel


class MailLogResponse(BaseModel):
    """原始日志条目查询响应体。"""
    id: int
    log_date: datetime
    hostname: str | None = None
    service: str | None = None
    process_id: int | None = None
    transaction_id: str | None = None
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MailLogSearchResponse(BaseModel):
    """原始日志搜索分页响应体。"""
    items: list[MailLogResponse]
    total: int
    page: int
    page_size: int
