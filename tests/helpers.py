"""
测试辅助：不依赖浏览器的页面宿主和回放环境
"""

from typing import Any, Dict, List, Optional

from action_recorder.execution.substrates import ReplaySubstrate
from action_recorder.utils.dom import DomSnapshot, element_children, parent_element


def element_path(snapshot: DomSnapshot, element) -> List[int]:
    """元素相对<html>的子元素索引路径（与页面捕获脚本一致）"""
    path = []
    current = element
    while current is not None and current is not snapshot.root:
        parent = parent_element(current)
        path.insert(0, element_children(parent).index(current))
        current = parent
    return path


def signal_for(kind: str, html: str, selector: Optional[str], **extra) -> Dict[str, Any]:
    """构造页面上报的原始信号"""
    snapshot = DomSnapshot.from_html(html)
    signal = {
        'kind': kind,
        'html': html,
        'path': element_path(snapshot, snapshot.select_one(selector)) if selector else None,
        'page': {'url': 'https://x.test/app', 'title': 'App'},
    }
    signal.update(extra)
    return signal


class FakePageHost:
    """记录挂载状态的页面宿主"""

    def __init__(self, url: str = 'https://x.test/app', title: str = 'App'):
        self.url = url
        self.title = title
        self.attached = False
        self.attach_count = 0
        self.on_signal = None
        self.on_navigation = None

    async def attach(self, on_signal, on_navigation):
        self.attached = True
        self.attach_count += 1
        self.on_signal = on_signal
        self.on_navigation = on_navigation

    async def detach(self):
        self.attached = False

    async def page_context(self) -> Dict[str, str]:
        return {'url': self.url, 'title': self.title}

    async def viewport(self) -> Dict[str, int]:
        return {'width': 1280, 'height': 800}

    async def scroll_position(self) -> Dict[str, float]:
        return {'x': 0, 'y': 0}

    async def diagnose(self) -> Dict[str, Any]:
        return {'url': self.url, 'title': self.title, 'captureActive': self.attached}


class SoupSubstrate(ReplaySubstrate):
    """基于BeautifulSoup文档的回放环境；带hidden属性的元素视为不可见"""

    name = 'soup'

    def __init__(self, html: str, url: str = 'https://x.test/form', supports_navigation: bool = True):
        self.document = DomSnapshot.from_html(html)
        self.url = url
        self.supports_navigation = supports_navigation
        self.actions: List[tuple] = []
        self.cleaned = False

    def _label(self, element) -> str:
        return element.get('id') or element.name

    async def current_url(self) -> str:
        return self.url

    async def navigate(self, url: str):
        self.actions.append(('navigate', url))
        self.url = url

    async def set_viewport(self, width: int, height: int):
        self.actions.append(('viewport', width, height))

    async def scroll_to(self, x: float, y: float):
        self.actions.append(('scroll', x, y))

    async def find_visible(self, selector: str):
        element = self.document.select_one(selector)
        if element is None or element.has_attr('hidden'):
            return None
        return element

    async def click(self, element, event):
        self.actions.append(('click', self._label(element), event.button))

    async def fill(self, element, value: str):
        element['value'] = value
        self.actions.append(('fill', self._label(element), value))

    async def press(self, element, key: str):
        self.actions.append(('press', self._label(element) if element is not None else None, key))

    async def cleanup(self):
        self.cleaned = True
