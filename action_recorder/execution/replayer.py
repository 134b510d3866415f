"""
回放引擎
按顺序执行轨迹事件：轮询候选选择器重新定位元素，超时有界，单个事件失败不影响后续事件
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from rich.console import Console
from rich.table import Table

from action_recorder.errors import (
    DriverConnectionError,
    HostMismatch,
    RecorderError,
    ReplayCancelled,
    ResolutionTimeout,
    UnsupportedEventType,
)
from action_recorder.execution.substrates import ReplaySubstrate
from action_recorder.recording.events import (
    ClickEvent,
    FillEvent,
    NavigateEvent,
    PressEvent,
    ScrollEvent,
    TraceEvent,
    UnknownEvent,
    ViewportEvent,
    parse_event,
)

console = Console()

STATUS_OK = 'ok'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'


@dataclass
class ReplayOptions:
    """回放参数（秒）"""

    resolve_timeout: float = 15.0
    poll_interval: float = 0.1
    settle_delay: float = 0.25
    scroll_settle: float = 0.2
    # 速度倍率，所有等待时间除以它
    speed: float = 1.0
    fail_fast: bool = False

    def scaled(self, seconds: float) -> float:
        if self.speed and self.speed > 0:
            return seconds / self.speed
        return seconds


@dataclass
class StepResult:
    index: int
    type: Any
    status: str
    error: Optional[str] = None
    selectors_tried: List[str] = field(default_factory=list)
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'type': self.type,
            'status': self.status,
            'error': self.error,
            'selectorsTried': list(self.selectors_tried),
            'duration': round(self.duration, 3),
        }


@dataclass
class ReplayReport:
    """一次回放的逐事件结果"""

    substrate: str
    total: int = 0
    steps: List[StepResult] = field(default_factory=list)
    aborted: Optional[str] = None

    @property
    def failures(self) -> List[StepResult]:
        return [step for step in self.steps if step.status == STATUS_FAILED]

    @property
    def ok(self) -> bool:
        return self.aborted is None and not self.failures

    def count(self, status: str) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def summary(self) -> str:
        """汇总成一条消息"""
        text = (
            f"Replay {'completed' if self.ok else 'failed'}: {len(self.steps)}/{self.total} events, "
            f"{self.count(STATUS_OK)} ok, {self.count(STATUS_SKIPPED)} skipped, "
            f"{self.count(STATUS_FAILED)} failed"
        )
        if self.aborted:
            text += f". Aborted: {self.aborted}"
        elif self.failures:
            first = self.failures[0]
            text += f". First failure at #{first.index} ({first.type}): {first.error}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'substrate': self.substrate,
            'total': self.total,
            'aborted': self.aborted,
            'summary': self.summary(),
            'steps': [step.to_dict() for step in self.steps],
        }

    def to_table(self) -> Table:
        table = Table(title="回放结果")
        table.add_column("#", style="cyan", justify="right")
        table.add_column("类型", style="magenta")
        table.add_column("状态")
        table.add_column("耗时", justify="right")
        table.add_column("错误", style="red")
        styles = {STATUS_OK: "green", STATUS_SKIPPED: "yellow", STATUS_FAILED: "red"}
        for step in self.steps:
            table.add_row(
                str(step.index),
                str(step.type),
                f"[{styles.get(step.status, 'white')}]{step.status}[/]",
                f"{step.duration:.2f}s",
                step.error or "",
            )
        return table


def host_of(url: Optional[str]) -> str:
    """URL的host（含端口）；无法解析时返回空字符串"""
    if not url:
        return ''
    try:
        return urlparse(url).netloc
    except ValueError:
        return ''


def recorded_host(events: Iterable[TraceEvent]) -> str:
    """第一个带page.url的事件决定录制时的host"""
    for event in events:
        page = getattr(event, 'page', None)
        if page is not None and page.url:
            return host_of(page.url)
    return ''


class ReplayEngine:
    """回放引擎"""

    def __init__(self, substrate: ReplaySubstrate, options: Optional[ReplayOptions] = None):
        self.substrate = substrate
        self.options = options or ReplayOptions()
        self.last_report: Optional[ReplayReport] = None
        self._cancelled = asyncio.Event()
        self._current_index: Optional[int] = None

    def cancel(self):
        """请求取消回放（在事件之间和轮询中生效）；run之前调用同样有效，取消后的引擎不再复用"""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def check_host(self, events: List[TraceEvent]):
        """host检查：任何动作执行之前"""
        expected = recorded_host(events)
        current = host_of(await self.substrate.current_url())
        if expected and current and expected != current:
            raise HostMismatch(expected, current)

    async def run(self, raw_events: Iterable[Any]) -> ReplayReport:
        """
        回放轨迹

        Args:
            raw_events: 事件模型或原始JSON字典

        Returns:
            ReplayReport: 逐事件结果

        Raises:
            HostMismatch: host不一致（不执行任何动作）
            ReplayCancelled: 回放被取消
            DriverConnectionError: 驱动连接中断
            RecorderError: fail_fast模式下第一个失败的事件
        """
        events = [parse_event(raw) for raw in raw_events]
        if not events:
            raise RecorderError("No events to replay")

        report = ReplayReport(substrate=self.substrate.name, total=len(events))
        self.last_report = report
        loop = asyncio.get_running_loop()

        try:
            await self.check_host(events)
        except HostMismatch as e:
            report.aborted = e.message
            console.print(f"❌ {e.message}", style="red")
            raise

        console.print(f"▶️  开始回放 {len(events)} 个事件 ({self.substrate.name})")
        try:
            for index, event in enumerate(events):
                self._current_index = index
                self._raise_if_cancelled()
                step = StepResult(index=index, type=event.type, status=STATUS_OK)
                started = loop.time()
                try:
                    step.status = await self.replay_event(event, step)
                except (ReplayCancelled, DriverConnectionError) as e:
                    step.status = STATUS_FAILED
                    step.error = e.message
                    report.aborted = e.message
                    raise
                except Exception as e:
                    step.status = STATUS_FAILED
                    step.error = e.message if isinstance(e, RecorderError) else str(e)
                    console.print(f"❌ [{index + 1}/{len(events)}] {event.type}: {step.error}", style="red")
                    if step.selectors_tried:
                        console.print(f"   尝试过的选择器: {' | '.join(step.selectors_tried)}", style="dim red")
                    if self.options.fail_fast:
                        report.aborted = step.error
                        raise
                finally:
                    step.duration = loop.time() - started
                    report.steps.append(step)

                if step.status == STATUS_OK:
                    console.print(f"✅ [{index + 1}/{len(events)}] {event.type}", style="dim")
                if step.status != STATUS_SKIPPED and not isinstance(event, ScrollEvent):
                    await self._sleep(self.options.scaled(self.options.settle_delay))
        except ReplayCancelled as e:
            report.aborted = e.message
            console.print(f"🛑 回放已取消 (事件 #{e.index})", style="yellow")
            raise
        finally:
            self._current_index = None
            try:
                await self.substrate.cleanup()
            except Exception as e:
                console.print(f"⚠️  清理回放环境失败: {e}", style="yellow")

        if report.ok:
            console.print(f"🎉 {report.summary()}", style="green")
        else:
            console.print(f"⚠️  {report.summary()}", style="yellow")
        return report

    async def replay_event(self, event: TraceEvent, step: Optional[StepResult] = None) -> str:
        """执行单个事件，返回状态"""
        if isinstance(event, UnknownEvent):
            warning = UnsupportedEventType(event.type)
            console.print(f"⚠️  {warning.message}，跳过", style="yellow")
            if step is not None:
                step.error = warning.message
            return STATUS_SKIPPED

        if isinstance(event, NavigateEvent):
            if not self.substrate.supports_navigation or not event.url:
                return STATUS_SKIPPED
            await self.substrate.navigate(event.url)
            return STATUS_OK

        if isinstance(event, ViewportEvent):
            if not self.substrate.supports_navigation or not (event.width and event.height):
                return STATUS_SKIPPED
            await self.substrate.set_viewport(event.width, event.height)
            return STATUS_OK

        if isinstance(event, ScrollEvent):
            await self.substrate.scroll_to(event.x, event.y)
            await self._sleep(self.options.scaled(self.options.scroll_settle))
            return STATUS_OK

        if isinstance(event, (ClickEvent, FillEvent, PressEvent)):
            selectors = event.candidates
            if step is not None:
                step.selectors_tried = list(selectors)
            if not selectors and not isinstance(event, PressEvent):
                console.print(f"⚠️  {event.type} 事件没有选择器，跳过", style="yellow")
                return STATUS_SKIPPED

            element = await self.resolve(selectors) if selectors else None
            if element is not None:
                await self.substrate.highlight(element)

            if isinstance(event, ClickEvent):
                await self.substrate.click(element, event)
            elif isinstance(event, FillEvent):
                await self.substrate.fill(element, event.value)
            else:
                await self.substrate.press(element, event.key)
            return STATUS_OK

        warning = UnsupportedEventType(getattr(event, 'type', None))
        console.print(f"⚠️  {warning.message}，跳过", style="yellow")
        return STATUS_SKIPPED

    async def resolve(self, selectors: List[str]):
        """
        轮询所有候选选择器直到命中可见元素

        Raises:
            ResolutionTimeout: 超时仍未命中
            ReplayCancelled: 轮询期间被取消
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.options.resolve_timeout
        while True:
            self._raise_if_cancelled()
            for selector in selectors:
                element = await self.substrate.find_visible(selector)
                if element is not None:
                    return element
            if loop.time() >= deadline:
                raise ResolutionTimeout(selectors, self.options.resolve_timeout)
            await self._sleep(self.options.poll_interval)

    def _raise_if_cancelled(self):
        if self._cancelled.is_set():
            raise ReplayCancelled(self._current_index)

    async def _sleep(self, seconds: float):
        """可被取消打断的等待"""
        if seconds <= 0:
            self._raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ReplayCancelled(self._current_index)
