"""日志导入路由模块。

提供手动触发导入（同步执行，完成后返回结果）、导入状态查询和 WebSocket 实时导入进度流。
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.core.exceptions import ConflictError, ImportFailedError
from app.schemas.log_import import CheckpointResponse, ImportResultResponse, ImportStatusResponse
from app.services.import_broadcaster import import_broadcaster
from app.services.log_importer import ImportStatus, LogImporter, get_log_importer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/import", tags=["import"])


@router.post("", response_model=ImportResultResponse)
async def trigger_import(importer: LogImporter = Depends(get_log_importer)):
    """手动触发一次导入并等待完成。导入进行中返回 409，导入失败返回 500 及失败原因。"""
    logger.info("Manual import requested")
    result = await importer.run(trigger="manual", timeout=settings.import_timeout_seconds)
    if result.status == ImportStatus.SKIPPED:
        raise ConflictError("Log import already in progress")
    if result.status == ImportStatus.FAILED:
        raise ImportFailedError("Log import failed", detail=result.error)
    return ImportResultResponse(**result.to_dict())


@router.get("/status", response_model=ImportStatusResponse)
async def import_status(importer: LogImporter = Depends(get_log_importer)):
    """查询导入器当前状态、检查点和最近一次导入结果。"""
    checkpoint = await asyncio.to_thread(importer.checkpoint_store.load)
    last_result = None
    if importer.last_result is not None:
        last_result = ImportResultResponse(**importer.last_result.to_dict())
    return ImportStatusResponse(
        state=importer.state.value,
        running=importer.running,
        log_file=str(importer.log_file),
        checkpoint=CheckpointResponse(**checkpoint.model_dump()),
        last_result=last_result,
    )


# ── WebSocket 实时导入进度 ────────────────────────────────────────────
ws_router = APIRouter()


@ws_router.websocket("/ws/import")
async def ws_import_progress(websocket: WebSocket):
    """WebSocket 导入进度流，转发一次导入的全部进度事件，收到 complete 事件后关闭连接。"""
    # 先订阅再握手，避免握手后、订阅前的事件丢失
    queue = import_broadcaster.subscribe()
    try:
        await websocket.accept()
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_dict())
            if event.is_terminal:
                break
        await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        import_broadcaster.unsubscribe(queue)
