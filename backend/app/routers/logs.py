"""原始邮件日志路由模块。

提供原始日志搜索/筛选功能，按时间倒序分页返回。
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.mail_log import MailLog
from app.schemas.mail_log import MailLogResponse, MailLogSearchResponse

router = APIRouter(prefix="/api/v1/logs", tags=["logs"])


@router.get("", response_model=MailLogSearchResponse)
async def search_logs(
    q: str | None = Query(None, description="Substring search on log content"),
    service: str | None = Query(None, description="Exact service name, e.g. postfix/smtp"),
    transaction_id: str | None = Query(None),
    start_time: datetime | None = Query(None),
    end_time: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """搜索原始日志，支持内容关键字、服务、队列 ID 和时间范围筛选，分页返回。"""
    conditions = []
    if q:
        conditions.append(MailLog.content.ilike(f"%{q}%"))
    if service:
        conditions.append(MailLog.service == service)
    if transaction_id:
        conditions.append(MailLog.transaction_id == transaction_id)
    if start_time:
        conditions.append(MailLog.log_date >= start_time)
    if end_time:
        conditions.append(MailLog.log_date <= end_time)

    count_stmt = select(func.count(MailLog.id))
    stmt = select(MailLog)
    for cond in conditions:
        count_stmt = count_stmt.where(cond)
        stmt = stmt.where(cond)

    total = (await db.execute(count_stmt)).scalar() or 0

    offset = (page - 1) * page_size
    stmt = stmt.order_by(MailLog.log_date.desc(), MailLog.id.desc()).offset(offset).limit(page_size)
    rows = await db.execute(stmt)
    items = [MailLogResponse.model_validate(row) for row in rows.scalars().all()]

    return MailLogSearchResponse(items=items, total=total, page=page, page_size=page_size)
