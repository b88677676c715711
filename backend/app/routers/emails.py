"""邮件投递记录路由模块。

提供投递记录搜索（发件人、收件人、状态、时间范围、全文关键字）和单条详情查询。
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import NotFoundError
from app.models.email_record import EmailRecord
from app.models.mail_log import MailLog
from app.schemas.email_record import (
    EmailRecordDetailResponse,
    EmailRecordResponse,
    EmailRecordSearchResponse,
)
from app.schemas.mail_log import MailLogResponse

router = APIRouter(prefix="/api/v1/emails", tags=["emails"])


@router.get("", response_model=EmailRecordSearchResponse)
async def search_emails(
    q: str | None = Query(None, description="Substring search across sender, recipient and response"),
    sender: str | None = Query(None),
    recipient: str | None = Query(None),
    status: str | None = Query(None, description="Comma-separated statuses, e.g. bounced,deferred"),
    start_time: datetime | None = Query(None),
    end_time: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """搜索投递记录，按首次出现时间倒序分页返回。"""
    conditions = []
    if q:
        pattern = f"%{q}%"
        conditions.append(or_(
            EmailRecord.sender.ilike(pattern),
            EmailRecord.recipient.ilike(pattern),
            EmailRecord.response_text.ilike(pattern),
        ))
    if sender:
        conditions.append(EmailRecord.sender.ilike(f"%{sender}%"))
    if recipient:
        conditions.append(EmailRecord.recipient.ilike(f"%{recipient}%"))
    if status:
        statuses = [s.strip().lower() for s in status.split(",") if s.strip()]
        conditions.append(EmailRecord.status.in_(statuses))
    if start_time:
        conditions.append(EmailRecord.log_date >= start_time)
    if end_time:
        conditions.append(EmailRecord.log_date <= end_time)

    count_stmt = select(func.count(EmailRecord.id))
    stmt = select(EmailRecord)
    for cond in conditions:
        count_stmt = count_stmt.where(cond)
        stmt = stmt.where(cond)

    total = (await db.execute(count_stmt)).scalar() or 0

    offset = (page - 1) * page_size
    stmt = stmt.order_by(EmailRecord.log_date.desc(), EmailRecord.id.desc()).offset(offset).limit(page_size)
    rows = await db.execute(stmt)
    items = [EmailRecordResponse.model_validate(row) for row in rows.scalars().all()]

    return EmailRecordSearchResponse(items=items, total=total, page=page, page_size=page_size)


@router.get("/{transaction_id}", response_model=EmailRecordDetailResponse)
async def get_email(transaction_id: str, db: AsyncSession = Depends(get_db)):
    """获取单条投递记录及其关联的原始日志行（按时间正序）。"""
    result = await db.execute(select(EmailRecord).where(EmailRecord.transaction_id == transaction_id))
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError(f"Email record {transaction_id} not found")

    log_rows = await db.execute(
        select(MailLog)
        .where(MailLog.transaction_id == transaction_id)
        .order_by(MailLog.log_date.asc(), MailLog.id.asc())
    )
    detail = EmailRecordDetailResponse.model_validate(record)
    detail.logs = [MailLogResponse.model_validate(row) for row in log_rows.scalars().all()]
    return detail
