"""
日志导入编排测试

覆盖端到端导入、幂等重导、文件缺失/为空、截断门控、超时、并发触发丢弃和进度事件。
"""
import asyncio
import json
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.email_record import EmailRecord
from app.models.mail_log import MailLog
from app.services.checkpoint import Checkpoint, CheckpointStore
from app.services.import_broadcaster import COMPLETE, ERROR, WARNING
from app.services.log_importer import (
    ImportState,
    ImportStatus,
    LogImporter,
    read_source,
    truncate_consumed,
)
from app.services.mail_log_store import MailLogStore
from tests.conftest import QMGR_LINE, SMTP_LINE


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


def _drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestReadSource:
    def test_holds_back_partial_line(self, log_file):
        log_file.parent.mkdir(parents=True)
        log_file.write_bytes(b"one\ntwo\nthr")
        snapshot = read_source(log_file, 0)
        assert snapshot.new_lines == [b"one\n", b"two\n"]
        assert snapshot.total_lines == 2
        assert snapshot.consumed_bytes == 8
        assert snapshot.size == 11

    def test_skips_checkpointed_lines(self, log_file):
        log_file.parent.mkdir(parents=True)
        log_file.write_bytes(b"one\ntwo\nthree\n")
        assert read_source(log_file, 2).new_lines == [b"three\n"]

    def test_checkpoint_beyond_end_restarts(self, log_file):
        log_file.parent.mkdir(parents=True)
        log_file.write_bytes(b"one\ntwo\n")
        assert read_source(log_file, 10).new_lines == [b"one\n", b"two\n"]

    def test_truncate_keeps_appended_tail(self, log_file):
        log_file.parent.mkdir(parents=True)
        log_file.write_bytes(b"one\ntwo\nappended later\n")
        assert truncate_consumed(log_file, 8) == len(b"appended later\n")
        assert log_file.read_bytes() == b"appended later\n"


class TestLogImporter:
    @pytest.mark.asyncio
    async def test_end_to_end(self, importer, write_log, log_file, state_file, session_factory):
        write_log(QMGR_LINE, SMTP_LINE)

        result = await importer.run()

        assert result.status == ImportStatus.COMPLETED
        assert result.lines_read == 2
        assert result.entries_parsed == 2
        assert result.entries_inserted == 2
        assert result.records_upserted == 1
        assert result.truncated is True
        assert log_file.read_bytes() == b""
        assert CheckpointStore(state_file).load().line_index == 0
        assert importer.state == ImportState.IDLE
        assert importer.last_result is result

        assert await _count(session_factory, MailLog) == 2
        async with session_factory() as db:
            record = (await db.execute(select(EmailRecord))).scalar_one()
        assert record.transaction_id == "ABC123"
        assert record.sender == "a@x.com"
        assert record.recipient == "b@y.com"
        assert record.size == 512
        assert record.relay == "mx.y.com"
        assert Decimal(str(record.delay)) == Decimal("0.42")
        assert record.status == "sent"
        assert record.dsn_code == "2.0.0"
        assert record.response_text == "250 OK"

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self, importer, write_log, log_file, state_file, session_factory):
        write_log(QMGR_LINE, SMTP_LINE)
        await importer.run()

        # 外部恢复了文件内容且检查点丢失
        write_log(QMGR_LINE, SMTP_LINE)
        state_file.unlink()
        result = await importer.run()

        assert result.status == ImportStatus.COMPLETED
        assert result.entries_inserted == 0
        assert result.entries_duplicate == 2
        assert result.truncated is False
        assert CheckpointStore(state_file).load().line_index == 2
        assert log_file.read_text(encoding="utf-8").count("\n") == 2
        assert await _count(session_factory, MailLog) == 2
        assert await _count(session_factory, EmailRecord) == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, importer, state_file):
        result = await importer.run()
        assert result.status == ImportStatus.NO_SOURCE
        assert result.ok
        assert not state_file.exists()

    @pytest.mark.asyncio
    async def test_empty_file_resets_checkpoint(self, importer, log_file, state_file):
        log_file.parent.mkdir(parents=True)
        log_file.write_bytes(b"")
        CheckpointStore(state_file).save(Checkpoint(line_index=7))

        result = await importer.run()

        assert result.status == ImportStatus.EMPTY
        assert CheckpointStore(state_file).load().line_index == 0

    @pytest.mark.asyncio
    async def test_unparseable_lines_counted(self, importer, write_log, state_file, session_factory):
        write_log(
            QMGR_LINE,
            "    continuation of a wrapped line",
            "",
            SMTP_LINE,
        )
        result = await importer.run()
        assert result.parse_errors == 1
        assert result.entries_inserted == 2
        assert CheckpointStore(state_file).load().parse_errors == 1
        assert await _count(session_factory, MailLog) == 2

    @pytest.mark.asyncio
    async def test_only_unparseable_lines_not_truncated(self, importer, write_log, log_file, state_file):
        write_log("garbage", "more garbage")
        result = await importer.run()
        assert result.status == ImportStatus.COMPLETED
        assert result.entries_inserted == 0
        assert result.truncated is False
        assert log_file.read_text(encoding="utf-8") == "garbage\nmore garbage\n"
        assert CheckpointStore(state_file).load().line_index == 2

        # 下次只读新增行
        write_log(QMGR_LINE, mode="a")
        result = await importer.run()
        assert result.lines_read == 1
        assert result.entries_inserted == 1
        assert result.truncated is True

    @pytest.mark.asyncio
    async def test_partial_trailing_line_kept(self, importer, write_log, log_file):
        write_log(QMGR_LINE)
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("2026-02-11T09:27:00+01:00 mail postfix/smtp[1]: ABC1")

        result = await importer.run()

        assert result.lines_read == 1
        assert result.truncated is True
        assert log_file.read_text(encoding="utf-8") == "2026-02-11T09:27:00+01:00 mail postfix/smtp[1]: ABC1"

    @pytest.mark.asyncio
    async def test_rotated_file_read_from_start(self, importer, write_log, state_file, session_factory):
        CheckpointStore(state_file).save(Checkpoint(line_index=50))
        write_log(QMGR_LINE, SMTP_LINE)
        result = await importer.run()
        assert result.lines_read == 2
        assert result.entries_inserted == 2

    @pytest.mark.asyncio
    async def test_without_truncation_advances_line_index(self, log_file, state_file, session_factory, write_log):
        importer = LogImporter(
            log_file=log_file,
            checkpoint_store=CheckpointStore(state_file),
            session_factory=session_factory,
            truncate_after_import=False,
        )
        write_log(QMGR_LINE)
        first = await importer.run()
        assert first.truncated is False
        assert CheckpointStore(state_file).load().line_index == 1

        write_log(SMTP_LINE, mode="a")
        second = await importer.run()
        assert second.lines_read == 1
        assert second.entries_inserted == 1
        assert CheckpointStore(state_file).load().line_index == 2
        assert log_file.read_text(encoding="utf-8").count("\n") == 2

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_file_and_checkpoint(
        self, importer, write_log, log_file, state_file, monkeypatch
    ):
        write_log(QMGR_LINE, SMTP_LINE)
        before = log_file.read_bytes()

        async def boom(self, entries):
            raise OperationalError("INSERT INTO mail_logs", {}, Exception("connection refused"))

        monkeypatch.setattr(MailLogStore, "persist_entries", boom)
        result = await importer.run()

        assert result.status == ImportStatus.FAILED
        assert not result.ok
        assert "connection refused" in result.error
        assert log_file.read_bytes() == before
        assert not state_file.exists()
        assert importer.state == ImportState.IDLE

    @pytest.mark.asyncio
    async def test_retry_after_failure_from_same_position(
        self, importer, write_log, session_factory, monkeypatch
    ):
        write_log(QMGR_LINE, SMTP_LINE)

        async def boom(self, entries):
            raise OperationalError("INSERT INTO mail_logs", {}, Exception("connection refused"))

        with monkeypatch.context() as m:
            m.setattr(MailLogStore, "persist_entries", boom)
            assert (await importer.run()).status == ImportStatus.FAILED

        result = await importer.run()
        assert result.status == ImportStatus.COMPLETED
        assert result.entries_inserted == 2
        assert await _count(session_factory, EmailRecord) == 1

    @pytest.mark.asyncio
    async def test_timeout(self, importer, write_log, log_file, state_file, monkeypatch):
        write_log(QMGR_LINE)

        async def slow(self, entries):
            await asyncio.sleep(5)

        monkeypatch.setattr(MailLogStore, "persist_entries", slow)
        result = await importer.run(timeout=0.05)

        assert result.status == ImportStatus.FAILED
        assert "timed out" in result.error
        assert not state_file.exists()
        assert log_file.read_text(encoding="utf-8") == QMGR_LINE + "\n"

    @pytest.mark.asyncio
    async def test_concurrent_trigger_skipped(self, importer, write_log, session_factory):
        write_log(QMGR_LINE, SMTP_LINE)

        first, second = await asyncio.gather(importer.run("manual"), importer.run("scheduled"))

        assert first.status == ImportStatus.COMPLETED
        assert second.status == ImportStatus.SKIPPED
        assert second.trigger == "scheduled"
        assert await _count(session_factory, MailLog) == 2
        assert not importer.running

    @pytest.mark.asyncio
    async def test_events_end_with_complete(self, importer, broadcaster, write_log):
        write_log(QMGR_LINE, SMTP_LINE)
        queue = broadcaster.subscribe()

        await importer.run()

        events = _drain(queue)
        assert events[-1].kind == COMPLETE
        assert events[-1].data["status"] == "completed"
        assert events[-1].data["entries_inserted"] == 2
        assert sum(1 for e in events if e.kind == COMPLETE) == 1
        json.dumps([e.to_dict() for e in events])

    @pytest.mark.asyncio
    async def test_events_on_missing_file(self, importer, broadcaster):
        queue = broadcaster.subscribe()
        await importer.run()
        kinds = [e.kind for e in _drain(queue)]
        assert WARNING in kinds
        assert kinds[-1] == COMPLETE

    @pytest.mark.asyncio
    async def test_events_on_failure(self, importer, broadcaster, write_log, monkeypatch):
        write_log(QMGR_LINE)

        async def boom(self, entries):
            raise OperationalError("INSERT INTO mail_logs", {}, Exception("connection refused"))

        monkeypatch.setattr(MailLogStore, "persist_entries", boom)
        queue = broadcaster.subscribe()
        await importer.run()

        events = _drain(queue)
        assert events[-2].kind == ERROR
        assert "persisting" in events[-2].message
        assert events[-1].kind == COMPLETE
        assert events[-1].data["status"] == "failed"


class TestFinalizeFailures:
    @pytest.mark.asyncio
    async def test_checkpoint_save_failure_keeps_file(self, importer, write_log, log_file, state_file, monkeypatch):
        """检查点写入失败时不截断文件，之后追加的行在下次导入时照常入库。"""
        write_log("garbage", "more garbage")
        assert (await importer.run()).status == ImportStatus.COMPLETED
        assert CheckpointStore(state_file).load().line_index == 2

        write_log(QMGR_LINE, mode="a")

        def disk_full(self, checkpoint):
            raise OSError("disk full")

        with monkeypatch.context() as m:
            m.setattr(CheckpointStore, "save", disk_full)
            result = await importer.run()

        assert result.status == ImportStatus.FAILED
        assert result.truncated is False
        assert "disk full" in result.error
        assert log_file.read_text(encoding="utf-8").count("\n") == 3
        assert CheckpointStore(state_file).load().line_index == 2

        write_log(SMTP_LINE, "2026-02-11T09:27:00+01:00 mail postfix/qmgr[1234]: ABC123: removed", mode="a")
        result = await importer.run()

        assert result.status == ImportStatus.COMPLETED
        assert result.lines_read == 3
        assert result.entries_inserted == 2
        assert result.entries_duplicate == 1
        assert result.truncated is True
        assert log_file.read_bytes() == b""

    @pytest.mark.asyncio
    async def test_truncate_failure_rereads_from_start(self, importer, write_log, log_file, state_file, monkeypatch):
        """截断失败时检查点已归零，下次从头重读，重复行只计为已存在。"""
        write_log(QMGR_LINE, SMTP_LINE)

        def shrunk(path, consumed_bytes):
            raise RuntimeError(f"{path} shrank during import, refusing to truncate")

        with monkeypatch.context() as m:
            m.setattr("app.services.log_importer.truncate_consumed", shrunk)
            result = await importer.run()

        assert result.status == ImportStatus.FAILED
        assert CheckpointStore(state_file).load().line_index == 0

        result = await importer.run()
        assert result.status == ImportStatus.COMPLETED
        assert result.entries_inserted == 0
        assert result.entries_duplicate == 2
        assert CheckpointStore(state_file).load().line_index == 2


class TestPartialPersistFailure:
    @pytest.mark.asyncio
    async def test_connection_lost_mid_batch(
        self, importer, write_log, log_file, state_file, session_factory, monkeypatch
    ):
        """第一批已提交、第二批连接断开：导入失败，文件和检查点不动，重试时补齐剩余行。"""
        write_log(QMGR_LINE, SMTP_LINE)
        before = log_file.read_bytes()
        original_commit = AsyncSession.commit
        commits = []

        async def flaky_commit(self):
            commits.append(1)
            if len(commits) == 2:
                raise OperationalError("INSERT INTO mail_logs", {}, Exception("server closed the connection"))
            await original_commit(self)

        with monkeypatch.context() as m:
            m.setattr("app.services.mail_log_store.BATCH_SIZE", 1)
            m.setattr(AsyncSession, "commit", flaky_commit)
            result = await importer.run()

        assert result.status == ImportStatus.FAILED
        assert "server closed the connection" in result.error
        assert log_file.read_bytes() == before
        assert not state_file.exists()
        assert await _count(session_factory, MailLog) == 1
        assert await _count(session_factory, EmailRecord) == 0

        result = await importer.run()
        assert result.status == ImportStatus.COMPLETED
        assert result.entries_inserted == 1
        assert result.entries_duplicate == 1
        assert result.records_upserted == 1
        assert result.truncated is True
