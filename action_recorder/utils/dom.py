"""
DOM快照
基于BeautifulSoup解析页面HTML，提供选择器查询和元素定位
"""

from typing import List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

# 视为文本输入的input类型
TEXT_INPUT_TYPES = {
    '', 'text', 'search', 'email', 'url', 'tel', 'password', 'number',
    'date', 'datetime-local', 'month', 'week', 'time',
}


class DomSnapshot:
    """页面DOM快照（某一时刻的document）"""

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup

    @classmethod
    def from_html(cls, html: str) -> 'DomSnapshot':
        return cls(BeautifulSoup(html or '', 'html.parser'))

    @property
    def root(self) -> Optional[Tag]:
        """文档根元素（通常是<html>）"""
        html = self.soup.find('html', recursive=False)
        if html is not None:
            return html
        return self.soup.find(True, recursive=False)

    def count(self, selector: str) -> int:
        """统计匹配选择器的元素数量，选择器非法时抛出异常"""
        return len(self.soup.select(selector))

    def select_one(self, selector: str) -> Optional[Tag]:
        try:
            return self.soup.select_one(selector)
        except Exception:
            return None

    def is_attached(self, selector: str) -> bool:
        """选择器是否仍然命中文档中的元素"""
        try:
            return self.count(selector) > 0
        except Exception:
            return False

    def element_at(self, path: Sequence[int]) -> Optional[Tag]:
        """按子元素索引路径（从<html>开始）定位元素"""
        current = self.root
        if current is None:
            return None
        for index in path or []:
            children = element_children(current)
            if index < 0 or index >= len(children):
                return None
            current = children[index]
        return current


def element_children(element: Tag) -> List[Tag]:
    return element.find_all(True, recursive=False)


def parent_element(element: Tag) -> Optional[Tag]:
    """父元素；文档对象本身不算元素"""
    parent = element.parent
    if parent is None or isinstance(parent, BeautifulSoup):
        return None
    return parent


def is_element(node) -> bool:
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def is_content_editable(element: Tag) -> bool:
    """contenteditable会从祖先继承，"false"会中断继承"""
    current = element
    while current is not None and is_element(current):
        value = current.get('contenteditable')
        if value is not None:
            return value.strip().lower() != 'false'
        current = current.parent
    return False


def is_text_input(element: Tag) -> bool:
    """input文本类输入框或textarea"""
    if not is_element(element):
        return False
    if element.name == 'textarea':
        return True
    if element.name == 'input':
        return (element.get('type') or '').strip().lower() in TEXT_INPUT_TYPES
    return False
