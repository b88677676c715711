"""
导入检查点模块 (Import Checkpoint Module)

持久化日志文件的消费进度（已导入行数）和最近一次导入的计数，实现增量导入与断点续读。
检查点文件缺失或损坏时按零检查点处理：宁可重复读取（依赖幂等写入去重），也不丢数据。

Persists how many lines of the log file have been consumed plus the counters of
the last successful import. A missing or corrupt file is treated as the zero
checkpoint, favoring reprocessing over data loss.
"""
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class Checkpoint(BaseModel):
    """导入检查点。兼容旧版导入脚本写出的 camelCase 字段。"""
    line_index: int = Field(0, ge=0, validation_alias=AliasChoices("line_index", "lineIndex"))
    last_processed_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("last_processed_at", "lastProcessed")
    )
    entries_inserted: int = Field(
        0, ge=0, validation_alias=AliasChoices("entries_inserted", "entriesProcessed")
    )
    records_upserted: int = Field(0, ge=0)
    parse_errors: int = Field(0, ge=0)


class CheckpointStore:
    """基于 JSON 文件的检查点存储，整文件读写。"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Checkpoint:
        """读取检查点；文件不存在或无法解析时返回零检查点。"""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Checkpoint.model_validate(data)
        except FileNotFoundError:
            return Checkpoint()
        except (OSError, json.JSONDecodeError, ValidationError, UnicodeDecodeError) as e:
            logger.warning(f"Checkpoint {self.path} unreadable, starting from line 0: {e}")
            return Checkpoint()

    def save(self, checkpoint: Checkpoint) -> None:
        """原子写入检查点：先写同目录临时文件，再替换目标文件。目录不存在时自动创建。"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(checkpoint.model_dump_json(indent=2))
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
