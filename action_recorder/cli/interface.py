"""
命令行界面
录制、管理和回放轨迹的click命令
"""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from action_recorder.errors import RecorderError
from action_recorder.execution.replayer import ReplayEngine, ReplayReport
from action_recorder.execution.substrates import DriverSubstrate
from action_recorder.recording.events import (
    ClickEvent,
    FillEvent,
    NavigateEvent,
    PressEvent,
    ScrollEvent,
    ViewportEvent,
    load_trace,
    parse_trace,
)
from action_recorder.session.manager import SessionManager
from action_recorder.session.store import JsonFileStore
from action_recorder.utils.config import Config
from action_recorder.utils.event_listener import PlaywrightPageHost
from action_recorder.utils.playwright_provider import close_browser, open_browser

console = Console()


def _manager(host=None) -> SessionManager:
    Config.ensure_directories()
    return SessionManager(JsonFileStore(Config.STORE_PATH), host=host)


def _fail(message: str):
    console.print(f"❌ {message}", style="bold red")
    sys.exit(1)


def describe_event(event) -> str:
    """时间线中事件的目标描述"""
    if isinstance(event, ClickEvent):
        return f"{event.selector} ({event.button})"
    if isinstance(event, FillEvent):
        return f"{event.selector} = {event.value!r}"
    if isinstance(event, PressEvent):
        return f"{event.key} @ {event.selector or '焦点元素'}"
    if isinstance(event, ScrollEvent):
        return f"({event.x:g}, {event.y:g})"
    if isinstance(event, ViewportEvent):
        return f"{event.width}x{event.height}"
    if isinstance(event, NavigateEvent):
        return f"{event.kind}: {event.url}"
    return json.dumps(event.to_dict(), ensure_ascii=False)[:80]


def timeline_table(title: str, events: List[Any]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("时间", style="dim", justify="right")
    table.add_column("类型", style="green")
    table.add_column("目标")
    table.add_column("页面", style="dim")
    start = None
    for index, event in enumerate(events):
        timestamp = getattr(event, 'timestamp', None)
        if start is None and timestamp:
            start = timestamp
        offset = f"+{(timestamp - start) / 1000:.1f}s" if timestamp and start else ""
        table.add_row(str(index), offset, str(event.type), describe_event(event), event.page.url)
    return table


@click.group()
def cli():
    """网页操作录制与回放"""


@cli.command()
@click.argument('trace', required=False, type=click.Path(dir_okay=False))
@click.option('--recording', 'recording_id', help='回放已保存的录制（ID）')
@click.option('--headless/--headed', default=None, help='是否以无头模式运行浏览器')
@click.option('--speed', type=float, default=None, help='速度倍率，所有等待时间除以它')
@click.option('--slow-mo', type=int, default=None, help='Playwright每个操作的延迟（毫秒）')
@click.option('--trace-output', type=click.Path(dir_okay=False), default=None, help='Playwright追踪文件（zip）')
@click.option('--cdp-url', default=None, help='连接已有浏览器的CDP地址')
@click.option('--fail-fast', is_flag=True, help='第一个失败的事件即终止')
@click.option('--report', 'report_path', type=click.Path(dir_okay=False), default=None, help='JSON回放报告输出路径')
def replay(trace, recording_id, headless, speed, slow_mo, trace_output, cdp_url, fail_fast, report_path):
    """通过Playwright驱动浏览器回放轨迹"""
    if not trace and not recording_id:
        raise click.UsageError("需要提供 TRACE 文件或 --recording ID")
    report = asyncio.run(_replay(
        trace, recording_id, headless, speed, slow_mo,
        trace_output or Config.TRACE_OUTPUT, cdp_url, fail_fast, report_path,
    ))
    if report is None or not report.ok:
        sys.exit(1)


async def _replay(trace, recording_id, headless, speed, slow_mo, trace_output, cdp_url, fail_fast, report_path) -> Optional[ReplayReport]:
    try:
        if recording_id:
            recording = await _manager().repository.load(recording_id)
            events = recording.trace()
            title = recording.name
        else:
            events = load_trace(trace)
            title = trace
    except RecorderError as e:
        _fail(e.message)

    console.print(Panel(
        f"📼 {title}\n事件数: {len(events)}\n{Config.get_browser_config_status()}",
        title="[bold blue]回放[/bold blue]",
        border_style="blue",
    ))

    try:
        session = await open_browser(headless=headless, slow_mo=slow_mo, cdp_url=cdp_url, trace_output=trace_output)
    except RecorderError as e:
        _fail(e.message)

    engine = ReplayEngine(DriverSubstrate(session.page), Config.replay_options(speed=speed, fail_fast=fail_fast))
    error: Optional[RecorderError] = None
    try:
        await engine.run(events)
    except RecorderError as e:
        error = e
    finally:
        await close_browser(session)

    report = engine.last_report
    if report is not None:
        console.print(report.to_table())
        if report_path:
            _write_report(report, report_path)
    if error is not None:
        console.print(f"❌ {error.message}", style="bold red")
        return None
    return report


def _write_report(report: ReplayReport, path: str):
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, 'w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)
    console.print(f"📄 回放报告已保存: {output}")


@cli.command()
@click.option('--url', required=True, help='起始页面URL')
@click.option('--name', default=None, help='录制名称')
@click.option('--headless/--headed', default=False, help='是否以无头模式运行浏览器')
def record(url, name, headless):
    """打开浏览器录制操作，按回车结束并保存"""
    asyncio.run(_record(url, name, headless))


async def _record(url: str, name: Optional[str], headless: bool):
    try:
        session = await open_browser(headless=headless)
    except RecorderError as e:
        _fail(e.message)

    try:
        host = PlaywrightPageHost(session.page)
        await host.install()
        await session.page.goto(url, wait_until='load')
        manager = _manager(host)
        started = await manager.start()
        if not started.ok:
            _fail(started.error)
        console.print(Panel(
            f"🎬 正在录制: {url}\n在浏览器中操作页面，完成后回到终端按回车",
            title="[bold blue]录制[/bold blue]",
            border_style="blue",
        ))
        await asyncio.to_thread(Prompt.ask, "⏹️  按回车结束录制", default="", show_default=False)
        await manager.stop()
        thumbnail = await host.thumbnail()
        saved = await manager.save_recording(name=name, thumbnail=thumbnail)
        if not saved.ok:
            _fail(saved.error)
        console.print(f"✅ 录制已保存: {saved.payload['name']} ({saved.payload['id']})", style="green")
    finally:
        await close_browser(session)


@cli.command(name='list')
def list_recordings():
    """列出已保存的录制"""
    result = asyncio.run(_manager().list_recordings())
    items: List[Dict[str, Any]] = result.payload.get('items', [])
    if not items:
        console.print("📭 暂无录制", style="yellow")
        return
    table = Table(title="[bold cyan]录制列表[/bold cyan]", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("名称", style="green")
    table.add_column("步骤数", justify="right")
    table.add_column("保存时间", style="dim")
    table.add_column("缩略图", justify="center")
    for item in items:
        saved_at = datetime.fromtimestamp(item['savedAt'] / 1000).strftime('%Y-%m-%d %H:%M') if item['savedAt'] else '-'
        table.add_row(item['id'], item['name'], str(item['steps']), saved_at, "✓" if item['thumbnail'] else "")
    console.print(table)


@cli.command()
@click.argument('recording_id')
def show(recording_id):
    """显示录制的事件时间线"""
    result = asyncio.run(_manager().load_recording(recording_id))
    if not result.ok:
        _fail(result.error)
    try:
        events = parse_trace(result.payload['events'])
    except RecorderError as e:
        _fail(e.message)
    console.print(timeline_table(result.payload['recording']['name'], events))


@cli.command()
@click.argument('recording_id')
@click.argument('name')
def rename(recording_id, name):
    """重命名录制"""
    result = asyncio.run(_manager().rename_recording(recording_id, name))
    if not result.ok:
        _fail(result.error)
    console.print(f"✏️  已重命名为: {name}", style="green")


@cli.command()
@click.argument('recording_id')
def delete(recording_id):
    """删除录制"""
    result = asyncio.run(_manager().delete_recording(recording_id))
    if not result.ok or not result.payload.get('deleted'):
        _fail(f"Recording not found: {recording_id}")
    console.print(f"🗑️  已删除: {recording_id}", style="green")


@cli.command()
@click.argument('recording_id')
@click.argument('path', type=click.Path(dir_okay=False))
def export(recording_id, path):
    """把录制导出为轨迹文件（可直接用于 replay）"""
    result = asyncio.run(_manager().export_recording(recording_id, path))
    if not result.ok:
        _fail(result.error)
    console.print(f"📤 已导出: {result.payload['path']}", style="green")
