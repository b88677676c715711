"""
SMTPLog 命令行入口模块。

提供 CLI 命令：import（执行一次导入）、status（查看检查点）、
parse（试运行解析与关联，不写数据库）和 serve（启动 API 服务）。
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from app.core.config import settings


@click.group(invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, verbose):
    """SMTPLog - Postfix 邮件日志导入与投递追踪。"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # 未指定子命令时，显示基本信息
    if ctx.invoked_subcommand is None:
        click.echo("SMTPLog v0.1.0")
        click.echo(f"Log file: {settings.log_file}")
        click.echo(f"State file: {settings.state_file}")
        click.echo("Use --help for available commands")


@cli.command("import")
@click.option("--timeout", type=float, default=None, help="Abort the run after this many seconds")
@click.option("--create-tables", "create_missing", is_flag=True, help="Create database tables before importing")
def import_logs(timeout, create_missing):
    """执行一次日志导入，失败时以非零状态码退出。"""
    from app.core.database import create_tables, engine
    from app.services.log_importer import ImportStatus, log_importer

    if timeout is None:
        timeout = settings.import_timeout_seconds

    async def _run():
        try:
            if create_missing:
                await create_tables()
            return await log_importer.run(trigger="cli", timeout=timeout)
        finally:
            await engine.dispose()

    result = asyncio.run(_run())
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.status == ImportStatus.FAILED:
        click.echo(f"Error: {result.error}", err=True)
        sys.exit(1)


@cli.command()
def status():
    """显示当前导入检查点。"""
    from app.services.checkpoint import CheckpointStore

    checkpoint = CheckpointStore(settings.state_file).load()
    click.echo(f"Log file: {settings.log_file}")
    click.echo(f"State file: {settings.state_file}")
    click.echo(checkpoint.model_dump_json(indent=2))


@cli.command()
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--raw", is_flag=True, help="Also print every parsed log entry")
def parse(log_file, raw):
    """试运行：解析并关联日志文件，打印投递记录，不写数据库也不修改文件。"""
    from app.services.correlator import correlate
    from app.services.log_parser import parse_line

    entries = []
    errors = 0
    with open(log_file, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            entry = parse_line(line)
            if entry is None:
                errors += 1
                continue
            entries.append(entry)
            if raw:
                click.echo(f"{entry.timestamp} {entry.hostname} {entry.service}[{entry.process_id}]: {entry.content}")

    records = correlate(entries)
    for record in records.values():
        if not record.is_identifiable:
            continue
        click.echo(json.dumps(record.to_dict(), default=str))
    click.echo(f"{len(entries)} entries, {errors} unparseable lines, {len(records)} transactions", err=True)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", default=3000, type=int, help="Bind port")
def serve(host, port):
    """启动 API 服务（含定时导入任务）。"""
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port, log_level="info")


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
