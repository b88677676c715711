"""
日志导入相关响应模型

定义手动导入结果和导入状态查询的数据结构。
"""
from datetime import datetime

from pydantic import BaseModel


class ImportResultResponse(BaseModel):
    """单次导入结果。"""
    status: str
    trigger: str
    lines_read: int
    entries_parsed: int
    parse_errors: int
    entries_inserted: int
    entries_duplicate: int
    entries_failed: int
    records_upserted: int
    records_failed: int
    truncated: bool
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class CheckpointResponse(BaseModel):
    """导入检查点。"""
    line_index: int
    last_processed_at: datetime | None = None
    entries_inserted: int
    records_upserted: int
    parse_errors: int


class ImportStatusResponse(BaseModel):
    """导入器当前状态。"""
    state: str
    running: bool
    log_file: str
    checkpoint: CheckpointResponse
    last_result: ImportResultResponse | None = None
