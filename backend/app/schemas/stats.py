"""
统计相关响应模型

定义总量统计和按时间分桶的图表数据结构。
"""
from datetime import datetime

from pydantic import BaseModel


class StatusCount(BaseModel):
    """按投递状态统计的计数项。"""
    status: str
    count: int


class StatsResponse(BaseModel):
    """总量统计响应体。"""
    total_logs: int
    total_emails: int
    sent_emails: int
    failed_emails: int
    by_status: list[StatusCount]


class TimelineBucket(BaseModel):
    """单个时间桶内按状态统计的投递数量。"""
    time_bucket: datetime
    status: str
    count: int


class TimelineResponse(BaseModel):
    """投递时间线响应体。"""
    period: str
    buckets: list[TimelineBucket]
