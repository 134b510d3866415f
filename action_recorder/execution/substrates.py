"""
回放执行环境
同一个回放引擎可以驱动两种环境：页面内（合成DOM事件）和外部驱动（Playwright真实输入）
"""

from typing import Any, List, Optional

from playwright.async_api import ElementHandle, Page
from rich.console import Console

from action_recorder.recording.events import ClickEvent, MOUSE_BUTTONS

console = Console()

_BUTTON_INDEX = {name: index for index, name in MOUSE_BUTTONS.items()}

_HIGHLIGHT_SCRIPT = """
(el) => {
  let overlay = window.__recorderOverlay;
  if (!overlay || !overlay.isConnected) {
    overlay = document.createElement('div');
    overlay.style.position = 'fixed';
    overlay.style.zIndex = '2147483647';
    overlay.style.border = '2px solid #1e90ff';
    overlay.style.pointerEvents = 'none';
    document.documentElement.appendChild(overlay);
    window.__recorderOverlay = overlay;
  }
  const r = el.getBoundingClientRect();
  overlay.style.left = r.left + 'px';
  overlay.style.top = r.top + 'px';
  overlay.style.width = r.width + 'px';
  overlay.style.height = r.height + 'px';
}
"""

_HIDE_HIGHLIGHT_SCRIPT = """
() => {
  const overlay = window.__recorderOverlay;
  if (overlay && overlay.parentNode) overlay.parentNode.removeChild(overlay);
  window.__recorderOverlay = null;
}
"""

_SYNTHETIC_CLICK_SCRIPT = """
(el, opts) => {
  el.focus();
  const init = {
    bubbles: true, cancelable: true, button: opts.button,
    altKey: opts.alt, ctrlKey: opts.ctrl, metaKey: opts.meta, shiftKey: opts.shift
  };
  if (opts.button === 0) {
    el.click();
    return;
  }
  el.dispatchEvent(new MouseEvent('mousedown', init));
  el.dispatchEvent(new MouseEvent('mouseup', init));
  el.dispatchEvent(new MouseEvent(opts.button === 2 ? 'contextmenu' : 'auxclick', init));
}
"""

_SYNTHETIC_FILL_SCRIPT = """
(el, value) => {
  el.focus();
  if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) {
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
  } else if (el.isContentEditable) {
    el.innerText = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
  }
}
"""

_SYNTHETIC_PRESS_SCRIPT = """
(el, key) => {
  const target = el || document.activeElement || document.body;
  if (el) el.focus();
  target.dispatchEvent(new KeyboardEvent('keydown', { key: key, bubbles: true }));
  target.dispatchEvent(new KeyboardEvent('keyup', { key: key, bubbles: true }));
}
"""


class ReplaySubstrate:
    """回放环境基类：回放引擎只通过这些操作访问页面"""

    name = 'base'
    # 是否能执行跨文档导航和视口调整
    supports_navigation = True

    async def current_url(self) -> str:
        raise NotImplementedError

    async def navigate(self, url: str):
        raise NotImplementedError

    async def set_viewport(self, width: int, height: int):
        raise NotImplementedError

    async def scroll_to(self, x: float, y: float):
        raise NotImplementedError

    async def find_visible(self, selector: str) -> Optional[Any]:
        """返回命中且可见的元素；任何页面错误都视为未找到"""
        raise NotImplementedError

    async def click(self, element: Any, event: ClickEvent):
        raise NotImplementedError

    async def fill(self, element: Any, value: str):
        raise NotImplementedError

    async def press(self, element: Optional[Any], key: str):
        raise NotImplementedError

    async def highlight(self, element: Any):
        pass

    async def cleanup(self):
        pass


class PlaywrightSubstrate(ReplaySubstrate):
    """基于Playwright页面的公共实现"""

    def __init__(self, page: Page):
        self.page = page

    async def current_url(self) -> str:
        return self.page.url

    async def scroll_to(self, x: float, y: float):
        await self.page.evaluate("([x, y]) => window.scrollTo(x, y)", [x or 0, y or 0])

    async def find_visible(self, selector: str) -> Optional[ElementHandle]:
        try:
            handle = await self.page.query_selector(selector)
            if handle is not None and await handle.is_visible():
                return handle
        except Exception:
            # 非法选择器、页面跳转中的上下文销毁等
            return None
        return None


class InPageSubstrate(PlaywrightSubstrate):
    """页面内回放：在当前文档中派发合成事件，不做跨页导航"""

    name = 'inline'
    supports_navigation = False

    def __init__(self, page: Page, show_highlight: bool = True):
        super().__init__(page)
        self.show_highlight = show_highlight

    async def navigate(self, url: str):
        # 页面内回放无法跨文档导航
        return None

    async def set_viewport(self, width: int, height: int):
        return None

    async def click(self, element: ElementHandle, event: ClickEvent):
        modifiers = event.modifiers
        await element.evaluate(_SYNTHETIC_CLICK_SCRIPT, {
            'button': _BUTTON_INDEX.get(event.button, 0),
            'alt': modifiers.alt,
            'ctrl': modifiers.ctrl,
            'meta': modifiers.meta,
            'shift': modifiers.shift,
        })

    async def fill(self, element: ElementHandle, value: str):
        await element.evaluate(_SYNTHETIC_FILL_SCRIPT, value)

    async def press(self, element: Optional[ElementHandle], key: str):
        if element is not None:
            await element.evaluate(_SYNTHETIC_PRESS_SCRIPT, key)
        else:
            # 没有选择器时发给当前焦点元素
            await self.page.evaluate(f"(key) => ({_SYNTHETIC_PRESS_SCRIPT})(null, key)", key)

    async def highlight(self, element: ElementHandle):
        if not self.show_highlight:
            return
        try:
            await element.evaluate(_HIGHLIGHT_SCRIPT)
        except Exception as e:
            console.print(f"⚠️  高亮元素失败: {e}", style="dim")

    async def cleanup(self):
        try:
            await self.page.evaluate(_HIDE_HIGHLIGHT_SCRIPT)
        except Exception as e:
            console.print(f"⚠️  移除高亮失败: {e}", style="dim")


class DriverSubstrate(PlaywrightSubstrate):
    """外部驱动回放：使用Playwright的真实鼠标键盘输入，支持导航和视口"""

    name = 'driver'

    async def navigate(self, url: str):
        if not url:
            return
        await self.page.goto(url, wait_until='load')

    async def set_viewport(self, width: int, height: int):
        if width and height:
            await self.page.set_viewport_size({'width': width, 'height': height})

    async def click(self, element: ElementHandle, event: ClickEvent):
        modifiers: List[str] = event.modifiers.playwright_modifiers()
        await element.click(button=event.button, modifiers=modifiers or None)

    async def fill(self, element: ElementHandle, value: str):
        tag_name = await element.evaluate("(el) => el.tagName.toLowerCase()")
        if tag_name in ('input', 'textarea'):
            await element.fill(value)
        else:
            # fill设置完整内容：先清空可编辑元素，再逐字输入
            await element.click()
            await element.evaluate("(el) => { el.focus(); el.innerText = ''; }")
            await self.page.keyboard.type(value)

    async def press(self, element: Optional[ElementHandle], key: str):
        if element is not None:
            await element.focus()
        await self.page.keyboard.press(key)
