"""
选择器解析器
为DOM元素计算一组可在之后重新定位该元素的CSS选择器（稳定的排在前面）
"""

from typing import List, Optional

import soupsieve
from bs4 import Tag

from action_recorder.utils.dom import DomSnapshot, is_element, parent_element

# 语义属性优先级
SEMANTIC_ATTRIBUTES = [
    'data-testid',
    'data-test',
    'data-qa',
    'aria-label',
    'name',
    'role',
    'placeholder',
    'type',
]

# 位置路径最大向上层数
MAX_PATH_DEPTH = 7


def escape_identifier(ident: str) -> str:
    """转义CSS标识符（等价于浏览器的CSS.escape）"""
    return soupsieve.escape(ident or '')


def escape_attribute_value(value: str) -> str:
    """转义双引号字符串中的属性值"""
    escaped = (value or '').replace('\\', '\\\\').replace('"', '\\"')
    return escaped.replace('\n', '\\a ').replace('\r', '\\d ')


def is_unique(document: DomSnapshot, selector: Optional[str]) -> bool:
    """选择器是否恰好匹配一个元素；非法选择器视为不唯一"""
    if not selector:
        return False
    try:
        return document.count(selector) == 1
    except Exception:
        return False


def id_selector(element: Tag, document: DomSnapshot) -> Optional[str]:
    element_id = element.get('id')
    if not element_id or not isinstance(element_id, str):
        return None
    selector = f"#{escape_identifier(element_id)}"
    return selector if is_unique(document, selector) else None


def attribute_selector(element: Tag, document: DomSnapshot) -> Optional[str]:
    """按语义属性优先级构建 tag[attr="value"]，返回第一个唯一的"""
    tag = element.name.lower()
    for attr in SEMANTIC_ATTRIBUTES:
        value = element.get(attr)
        if isinstance(value, list):
            value = ' '.join(value)
        if not value:
            continue
        selector = f'{tag}[{attr}="{escape_attribute_value(value)}"]'
        if is_unique(document, selector):
            return selector
    return None


def _path_segment(element: Tag) -> str:
    tag = element.name.lower()
    parent = element.parent
    if parent is None:
        return tag
    siblings = parent.find_all(element.name, recursive=False)
    if len(siblings) > 1:
        index = next(i for i, sibling in enumerate(siblings) if sibling is element) + 1
        return f"{tag}:nth-of-type({index})"
    return tag


def positional_path(element: Tag, document: DomSnapshot, max_depth: int = MAX_PATH_DEPTH) -> Optional[str]:
    """
    从元素向上构建 nth-of-type 路径

    每加一层就测试一次唯一性，最短的唯一后缀胜出；
    到达层数上限仍不唯一时返回完整路径作为兜底。
    """
    path: List[str] = []
    current: Optional[Tag] = element
    depth = 0
    while current is not None and depth < max_depth:
        path.insert(0, _path_segment(current))
        candidate = '>'.join(path)
        if is_unique(document, candidate):
            return candidate
        current = parent_element(current)
        depth += 1
    fallback = '>'.join(path)
    # 兜底路径至少要能选中元素本身
    try:
        matches = document.soup.select(fallback) if fallback else []
    except Exception:
        return None
    return fallback if any(match is element for match in matches) else None


def compute_selectors(element, document: DomSnapshot) -> List[str]:
    """
    计算元素的候选选择器列表

    Args:
        element: 目标元素
        document: 元素所在的DOM快照

    Returns:
        List[str]: 去重后的候选选择器，依次为 id、语义属性、位置路径；
        非元素节点返回空列表
    """
    if not is_element(element):
        return []

    selectors: List[str] = []
    for candidate in (
        id_selector(element, document),
        attribute_selector(element, document),
        positional_path(element, document),
    ):
        if candidate and candidate not in selectors:
            selectors.append(candidate)
    return selectors
