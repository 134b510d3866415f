"""
事件监听器
在页面中注入捕获脚本，把用户交互和导航信号转发给Python端
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from playwright.async_api import Page
from rich.console import Console

console = Console()

SignalHandler = Callable[[Dict[str, Any]], Awaitable[None]]
NavigationHandler = Callable[..., Awaitable[None]]

# Navigation API 的 navigationType → 轨迹中的导航类型
NAVIGATION_TYPE_KINDS = {
    'push': 'pushState',
    'replace': 'replaceState',
    'traverse': 'popstate',
    'popstate': 'popstate',
}

CAPTURE_SCRIPT = r"""
(() => {
  if (window.__recorderInstalled) return;
  window.__recorderInstalled = true;
  window.__recorderActive = false;

  function emit(payload) {
    if (!window.__recorderActive) return;
    try {
      payload.page = { url: location.href, title: document.title };
      window.__recorderEmit(payload);
    } catch (e) {}
  }

  // 元素在 <html> 之下的子元素索引路径
  function elementPath(el) {
    if (!el || el.nodeType !== 1) return null;
    const path = [];
    let cur = el;
    while (cur && cur !== document.documentElement) {
      const parent = cur.parentElement;
      if (!parent) return null;
      path.unshift(Array.prototype.indexOf.call(parent.children, cur));
      cur = parent;
    }
    return cur === document.documentElement ? path : null;
  }

  function snapshot() {
    return document.documentElement ? document.documentElement.outerHTML : '';
  }

  document.addEventListener('click', (e) => {
    emit({
      kind: 'click',
      path: elementPath(e.target),
      html: snapshot(),
      button: e.button,
      altKey: e.altKey, ctrlKey: e.ctrlKey, metaKey: e.metaKey, shiftKey: e.shiftKey
    });
  }, true);

  document.addEventListener('input', (e) => {
    const t = e.target;
    if (!t || t.nodeType !== 1) return;
    const value = t.isContentEditable ? t.innerText : t.value;
    emit({ kind: 'input', path: elementPath(t), html: snapshot(), value: value == null ? '' : String(value) });
  }, true);

  document.addEventListener('keydown', (e) => {
    if (e.key !== 'Enter' && e.key !== 'Escape' && (!e.key || e.key.length !== 1)) return;
    const active = document.activeElement;
    emit({ kind: 'keydown', key: e.key, path: elementPath(active), html: active ? snapshot() : '' });
  }, true);

  window.addEventListener('scroll', () => {
    emit({ kind: 'scroll', x: window.scrollX, y: window.scrollY });
  }, { passive: true });

  // 导航观察：优先使用 Navigation API，不改写 history 方法
  if (window.navigation && typeof window.navigation.addEventListener === 'function') {
    window.navigation.addEventListener('navigate', (e) => {
      try {
        if (!e.destination || !e.destination.sameDocument) return;
        emit({ kind: 'navigate', navigationType: e.navigationType, url: e.destination.url });
      } catch (err) {}
    });
  } else {
    window.addEventListener('popstate', () => {
      emit({ kind: 'navigate', navigationType: 'popstate', url: location.href });
    });
  }

  // 新文档加载后向Python同步录制状态
  try {
    window.__recorderSync().then((active) => { window.__recorderActive = !!active; });
  } catch (e) {}
})();
"""


class PageHost(Protocol):
    """录制宿主接口：EventCapture只依赖这些操作"""

    async def attach(self, on_signal: SignalHandler, on_navigation: NavigationHandler): ...

    async def detach(self): ...

    async def page_context(self) -> Dict[str, str]: ...

    async def viewport(self) -> Dict[str, int]: ...

    async def scroll_position(self) -> Dict[str, float]: ...


class NavigationObserver:
    """把页面上报的导航信号映射为轨迹导航类型"""

    def __init__(self, callback: NavigationHandler):
        self.callback = callback

    @staticmethod
    def kind_for(navigation_type: Optional[str]) -> Optional[str]:
        return NAVIGATION_TYPE_KINDS.get(navigation_type or '')

    async def notify(self, signal: Dict[str, Any]):
        kind = self.kind_for(signal.get('navigationType'))
        if kind is None:
            return
        await self.callback(kind, signal.get('url') or '', signal.get('page'))


class PlaywrightPageHost:
    """基于Playwright页面的录制宿主"""

    def __init__(self, page: Page):
        self.page = page
        self._installed = False
        self._signal_handler: Optional[SignalHandler] = None
        self._navigation_observer: Optional[NavigationObserver] = None
        # 所有信号按到达顺序进入同一队列，由单个任务依次处理
        self._signals: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def attached(self) -> bool:
        return self._signal_handler is not None

    async def install(self):
        """注入捕获脚本并暴露回传通道（每个页面一次）"""
        if self._installed:
            return
        if not self.page:
            raise ValueError("Page对象为None")
        await self.page.expose_binding("__recorderEmit", self._on_emit)
        await self.page.expose_binding("__recorderSync", self._on_sync)
        await self.page.add_init_script(CAPTURE_SCRIPT)
        try:
            # 当前已加载的文档也需要注入
            await self.page.evaluate(CAPTURE_SCRIPT)
        except Exception as e:
            console.print(f"⚠️  当前页面注入捕获脚本失败: {e}", style="yellow")
        self.page.on('close', lambda _: self._reset())
        self._installed = True
        console.print("✅ 捕获脚本已注入")

    async def attach(self, on_signal: SignalHandler, on_navigation: NavigationHandler):
        await self.install()
        self._signal_handler = on_signal
        self._navigation_observer = NavigationObserver(on_navigation)
        await self._set_active(True)

    async def detach(self):
        self._reset()
        self._stop_worker()
        await self._set_active(False)

    async def page_context(self) -> Dict[str, str]:
        title = ''
        try:
            title = await self.page.title()
        except Exception as e:
            console.print(f"⚠️  获取页面标题失败: {e}", style="dim")
        return {'url': self.page.url, 'title': title}

    async def viewport(self) -> Dict[str, int]:
        size = self.page.viewport_size
        if size:
            return dict(size)
        return await self.page.evaluate("() => ({ width: window.innerWidth, height: window.innerHeight })")

    async def scroll_position(self) -> Dict[str, float]:
        return await self.page.evaluate("() => ({ x: window.scrollX, y: window.scrollY })")

    async def diagnose(self) -> Dict[str, Any]:
        return await self.page.evaluate("""
            () => ({
                url: location.href,
                title: document.title,
                readyState: document.readyState,
                captureInstalled: !!window.__recorderInstalled,
                captureActive: !!window.__recorderActive
            })
        """)

    async def thumbnail(self) -> Optional[str]:
        """当前页面的JPEG缩略图（data URL）"""
        import base64

        try:
            image = await self.page.screenshot(type='jpeg', quality=50)
        except Exception as e:
            console.print(f"⚠️  截取缩略图失败: {e}", style="yellow")
            return None
        return "data:image/jpeg;base64," + base64.b64encode(image).decode('ascii')

    async def _set_active(self, active: bool):
        try:
            await self.page.evaluate(f"window.__recorderActive = {'true' if active else 'false'}")
        except Exception as e:
            console.print(f"⚠️  同步录制状态失败: {e}", style="yellow")

    def _reset(self):
        self._signal_handler = None
        self._navigation_observer = None

    async def _on_sync(self, source) -> bool:
        return self.attached

    async def _on_emit(self, source, payload: Dict[str, Any]):
        if self._signal_handler is None or not isinstance(payload, dict):
            return
        # 只入队不等待处理，不阻塞页面脚本
        self._signals.put_nowait(payload)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain_signals())

    async def flush(self):
        """等待已收到的信号全部处理完"""
        await self._signals.join()

    def _stop_worker(self):
        """停止处理任务并丢弃尚未处理的信号"""
        if self._worker is not None and self._worker is not asyncio.current_task():
            self._worker.cancel()
            self._worker = None
        while not self._signals.empty():
            self._signals.get_nowait()
            self._signals.task_done()

    async def _drain_signals(self):
        while True:
            payload = await self._signals.get()
            try:
                await self._dispatch(payload)
            finally:
                self._signals.task_done()

    async def _dispatch(self, payload: Dict[str, Any]):
        handler = self._signal_handler
        observer = self._navigation_observer
        if handler is None:
            return
        if payload.get('kind') == 'navigate':
            if observer is not None:
                await self._safe_handle(observer.notify, payload)
        else:
            await self._safe_handle(handler, payload)

    async def _safe_handle(self, handler, payload: Dict[str, Any]):
        try:
            await handler(payload)
        except Exception as emit_err:
            console.print(f"⚠️  处理{payload.get('kind')}信号失败: {emit_err}", style="yellow")
