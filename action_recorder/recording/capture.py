"""
事件捕获
录制状态机：Idle ⇄ Recording，把页面上的原始交互信号转换为不可变的轨迹事件
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from rich.console import Console

from action_recorder.recording.events import (
    BaseEvent,
    ClickEvent,
    FillEvent,
    Modifiers,
    NavigateEvent,
    PageContext,
    PressEvent,
    ScrollEvent,
    ViewportEvent,
    MOUSE_BUTTONS,
    NAVIGATION_KINDS,
    new_recording_id,
)
from action_recorder.recording.selector_resolver import compute_selectors
from action_recorder.utils.dom import DomSnapshot, is_content_editable, is_text_input

console = Console()

EventSink = Callable[[BaseEvent], Awaitable[None]]

# 需要录制的非字符按键
SPECIAL_KEYS = ('Enter', 'Escape')


class CaptureStatus(str, Enum):
    IDLE = 'Idle'
    RECORDING = 'Recording'


@dataclass
class CaptureSession:
    """当前录制会话的全部可变状态"""

    status: CaptureStatus = CaptureStatus.IDLE
    session_id: Optional[str] = None
    trace: List[BaseEvent] = field(default_factory=list)
    # selector -> 最近一次录制的输入值
    last_values: Dict[str, str] = field(default_factory=dict)


def should_record_key(key: Optional[str]) -> bool:
    if not key:
        return False
    return key in SPECIAL_KEYS or len(key) == 1


@dataclass
class TargetInfo:
    """从页面快照中解析出的信号目标"""

    selectors: List[str] = field(default_factory=list)
    editable: bool = False
    # 快照中已不存在的已跟踪选择器
    detached: List[str] = field(default_factory=list)


def analyze_target(html: Optional[str], path: Optional[List[int]], tracked: Iterable[str] = ()) -> TargetInfo:
    """
    解析快照、定位目标元素并计算选择器

    整页HTML解析开销较大，调用方通过 asyncio.to_thread 在线程中执行
    """
    if not html or path is None:
        return TargetInfo()
    document = DomSnapshot.from_html(html)
    element = document.element_at(path)
    if element is None:
        return TargetInfo()
    return TargetInfo(
        selectors=compute_selectors(element, document),
        editable=is_text_input(element) or is_content_editable(element),
        detached=[selector for selector in tracked if not document.is_attached(selector)],
    )


class EventCapture:
    """事件捕获器"""

    def __init__(
        self,
        host,
        on_event: Optional[EventSink] = None,
        scroll_debounce: float = 0.2,
    ):
        """
        Args:
            host: 页面宿主（PageHost），负责挂载/卸载监听并上报原始信号
            on_event: 每产生一个事件时调用的异步回调（通常写入存储）
            scroll_debounce: 滚动防抖时长（秒）
        """
        self.host = host
        self.on_event = on_event
        self.scroll_debounce = scroll_debounce
        self.session = CaptureSession()
        self._scroll_task: Optional[asyncio.Task] = None
        self._pending_scroll: Optional[Dict[str, Any]] = None
        # 串行处理信号，避免并发事件打乱顺序
        self._signal_lock = asyncio.Lock()

    @property
    def is_recording(self) -> bool:
        return self.session.status == CaptureStatus.RECORDING

    @property
    def events(self) -> List[BaseEvent]:
        return list(self.session.trace)

    async def start(self) -> str:
        """Idle → Recording：新会话、挂载监听、立即记录视口和起始导航"""
        if self.is_recording:
            return self.session.session_id
        self.session = CaptureSession(
            status=CaptureStatus.RECORDING,
            session_id=new_recording_id(),
        )
        await self.host.attach(self.handle_signal, self.handle_navigation)
        console.print(f"🎬 录制开始: {self.session.session_id}")

        page = await self._page_context()
        viewport = await self.host.viewport()
        await self._emit(ViewportEvent(
            page=page,
            recording_id=self.session.session_id,
            width=int(viewport.get('width') or 0),
            height=int(viewport.get('height') or 0),
        ))
        await self._emit(NavigateEvent(
            page=page,
            recording_id=self.session.session_id,
            url=page.url,
            kind='start',
        ))
        return self.session.session_id

    async def resume(self, session_id: str, trace: Optional[List[BaseEvent]] = None):
        """恢复已有会话（页面重载或进程重启后同步状态），不重复记录起始事件"""
        if self.is_recording:
            return
        self.session = CaptureSession(
            status=CaptureStatus.RECORDING,
            session_id=session_id,
            trace=list(trace or []),
        )
        await self.host.attach(self.handle_signal, self.handle_navigation)
        console.print(f"🔄 录制已恢复: {session_id}")

    async def stop(self):
        """Recording → Idle：卸载监听；不做任何持久化"""
        if not self.is_recording:
            return
        self.session.status = CaptureStatus.IDLE
        self._cancel_scroll_timer()
        try:
            await self.host.detach()
        except Exception as e:
            console.print(f"⚠️  卸载监听失败: {e}", style="yellow")
        console.print(f"🛑 录制停止: {self.session.session_id} ({len(self.session.trace)} 个事件)")

    def clear(self):
        """清空当前轨迹（保留会话状态）"""
        self.session.trace = []
        self.session.last_values = {}

    async def handle_signal(self, signal: Dict[str, Any]):
        """处理页面上报的原始交互信号"""
        if not self.is_recording or not isinstance(signal, dict):
            return
        kind = signal.get('kind')
        if kind == 'scroll':
            self._schedule_scroll(signal)
            return
        async with self._signal_lock:
            # 等锁期间可能已经停止录制
            if not self.is_recording:
                return
            if kind == 'click':
                await self._handle_click(signal)
            elif kind == 'input':
                await self._handle_input(signal)
            elif kind == 'keydown':
                await self._handle_keydown(signal)

    async def handle_navigation(self, kind: str, url: str, page: Optional[Dict[str, Any]] = None):
        """导航观察者回调：同文档URL变化和前进/后退"""
        if not self.is_recording or kind not in NAVIGATION_KINDS or kind == 'start':
            return
        async with self._signal_lock:
            if not self.is_recording:
                return
            await self._emit(NavigateEvent(
                page=self._page_from(page, url),
                recording_id=self.session.session_id,
                url=url,
                kind=kind,
            ))

    async def _handle_click(self, signal: Dict[str, Any]):
        selectors = (await self._analyze(signal)).selectors
        if not selectors:
            console.print("⚠️  点击目标无法生成选择器，跳过", style="dim")
            return
        button = signal.get('button', 0)
        await self._emit(ClickEvent(
            page=self._page_from(signal.get('page')),
            recording_id=self.session.session_id,
            selector=selectors[0],
            selectors=selectors,
            button=MOUSE_BUTTONS.get(button, 'left') if isinstance(button, int) else button,
            modifiers=Modifiers(
                alt=bool(signal.get('altKey')),
                ctrl=bool(signal.get('ctrlKey')),
                meta=bool(signal.get('metaKey')),
                shift=bool(signal.get('shiftKey')),
            ),
        ))

    async def _handle_input(self, signal: Dict[str, Any]):
        target = await self._analyze(signal, tracked=list(self.session.last_values))
        if not target.editable or not target.selectors:
            return
        selectors = target.selectors
        key = selectors[0]
        value = '' if signal.get('value') is None else str(signal.get('value'))

        # 清理已从文档中移除的元素
        for stale in target.detached:
            if stale != key:
                self.session.last_values.pop(stale, None)

        previous = self.session.last_values.get(key)
        self.session.last_values[key] = value
        if previous == value:
            return
        await self._emit(FillEvent(
            page=self._page_from(signal.get('page')),
            recording_id=self.session.session_id,
            selector=key,
            selectors=selectors,
            value=value,
        ))

    async def _handle_keydown(self, signal: Dict[str, Any]):
        key = signal.get('key')
        if not should_record_key(key):
            return
        selectors = (await self._analyze(signal)).selectors
        await self._emit(PressEvent(
            page=self._page_from(signal.get('page')),
            recording_id=self.session.session_id,
            key=key,
            selector=selectors[0] if selectors else None,
            selectors=selectors,
        ))

    def _schedule_scroll(self, signal: Dict[str, Any]):
        """滚动防抖：每次信号都重启计时器，只记录最终位置"""
        self._pending_scroll = signal
        self._cancel_scroll_timer()
        self._scroll_task = asyncio.create_task(self._emit_scroll_later())

    async def _emit_scroll_later(self):
        try:
            await asyncio.sleep(self.scroll_debounce)
        except asyncio.CancelledError:
            return
        signal = self._pending_scroll or {}
        self._pending_scroll = None
        self._scroll_task = None
        if not self.is_recording:
            return
        async with self._signal_lock:
            if not self.is_recording:
                return
            await self._emit(ScrollEvent(
                page=self._page_from(signal.get('page')),
                recording_id=self.session.session_id,
                x=signal.get('x') or 0,
                y=signal.get('y') or 0,
            ))

    def _cancel_scroll_timer(self):
        if self._scroll_task and not self._scroll_task.done():
            self._scroll_task.cancel()
        self._scroll_task = None

    async def _analyze(self, signal: Dict[str, Any], tracked: Iterable[str] = ()) -> TargetInfo:
        if not signal.get('html') or signal.get('path') is None:
            return TargetInfo()
        return await asyncio.to_thread(analyze_target, signal.get('html'), signal.get('path'), list(tracked))

    def _page_from(self, page: Optional[Dict[str, Any]], url: Optional[str] = None) -> PageContext:
        page = dict(page or {})
        if url and not page.get('url'):
            page['url'] = url
        return PageContext(url=page.get('url') or '', title=page.get('title') or '')

    async def _page_context(self) -> PageContext:
        try:
            return self._page_from(await self.host.page_context())
        except Exception as e:
            console.print(f"⚠️  获取页面信息失败: {e}", style="yellow")
            return PageContext()

    async def _emit(self, event: BaseEvent):
        # 线程解析期间可能已经停止录制
        if not self.is_recording:
            return
        self.session.trace.append(event)
        console.print(f"📝 {event.type}: {getattr(event, 'selector', None) or getattr(event, 'url', '') or ''}", style="dim")
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception as e:
            console.print(f"⚠️  保存事件失败: {e}", style="yellow")
