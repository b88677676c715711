"""统计路由模块。

提供日志与投递记录总量、按状态分布，以及按时间分桶的投递趋势数据（供图表使用）。
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.email_record import EmailRecord
from app.models.mail_log import MailLog
from app.schemas.stats import StatsResponse, StatusCount, TimelineBucket, TimelineResponse

router = APIRouter(prefix="/api/v1/stats", tags=["stats"])


@router.get("", response_model=StatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)):
    """获取总量统计：日志条数、投递记录数、成功数、失败数和按状态分布。"""
    total_logs = (await db.execute(select(func.count(MailLog.id)))).scalar() or 0
    total_emails = (await db.execute(select(func.count(EmailRecord.id)))).scalar() or 0
    sent_emails = (await db.execute(
        select(func.count(EmailRecord.id)).where(EmailRecord.status == "sent")
    )).scalar() or 0
    # 状态非空且不是 sent 的都算失败（bounced/deferred/expired 等）
    failed_emails = (await db.execute(
        select(func.count(EmailRecord.id)).where(
            EmailRecord.status.is_not(None), EmailRecord.status != "sent"
        )
    )).scalar() or 0

    status_rows = await db.execute(
        select(EmailRecord.status, func.count(EmailRecord.id).label("count"))
        .group_by(EmailRecord.status)
        .order_by(func.count(EmailRecord.id).desc())
    )
    by_status = [StatusCount(status=row.status or "unknown", count=row.count) for row in status_rows.all()]

    return StatsResponse(
        total_logs=total_logs,
        total_emails=total_emails,
        sent_emails=sent_emails,
        failed_emails=failed_emails,
        by_status=by_status,
    )


@router.get("/timeline", response_model=TimelineResponse)
async def get_timeline(
    period: str = Query("1h", pattern="^(1h|1d)$", description="Time bucket: 1h or 1d"),
    start_time: datetime | None = Query(None),
    end_time: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """按小时或天分桶统计各状态的投递数量。"""
    trunc = "hour" if period == "1h" else "day"
    bucket = func.date_trunc(trunc, EmailRecord.log_date).label("time_bucket")
    status = func.coalesce(EmailRecord.status, "unknown").label("status")
    stmt = (
        select(bucket, status, func.count(EmailRecord.id).label("count"))
        .group_by(bucket, status)
        .order_by(bucket, status)
    )
    if start_time:
        stmt = stmt.where(EmailRecord.log_date >= start_time)
    if end_time:
        stmt = stmt.where(EmailRecord.log_date <= end_time)

    rows = await db.execute(stmt)
    buckets = [
        TimelineBucket(time_bucket=row.time_bucket, status=row.status, count=row.count)
        for row in rows.all()
    ]
    return TimelineResponse(period=period, buckets=buckets)
