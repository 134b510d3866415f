"""
轨迹数据模型
每种事件类型一个不可变模型，通过 type 字段区分；轨迹序列化为扁平JSON数组
"""

import json
import random
import string
import time
from pathlib import Path
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from action_recorder.errors import TraceFormatError

EVENT_TYPES = ('click', 'fill', 'press', 'scroll', 'viewport', 'navigate')
NAVIGATION_KINDS = ('start', 'pushState', 'replaceState', 'popstate')
MOUSE_BUTTONS = {0: 'left', 1: 'middle', 2: 'right'}

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def _to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return ''.join(reversed(digits))


def new_recording_id() -> str:
    """生成录制ID，格式 rec-<时间戳base36>-<6位随机>"""
    suffix = ''.join(random.choice(_BASE36) for _ in range(6))
    return f"rec-{_to_base36(now_ms())}-{suffix}"


class TraceModel(BaseModel):
    """轨迹模型基类：不可变，Python侧snake_case，JSON侧camelCase"""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra='ignore',
    )


class PageContext(TraceModel):
    url: str = ''
    title: str = ''


class Modifiers(TraceModel):
    alt: bool = Field(False, validation_alias=AliasChoices('alt', 'altKey'))
    ctrl: bool = Field(False, validation_alias=AliasChoices('ctrl', 'ctrlKey'))
    meta: bool = Field(False, validation_alias=AliasChoices('meta', 'metaKey'))
    shift: bool = Field(False, validation_alias=AliasChoices('shift', 'shiftKey'))

    def playwright_modifiers(self) -> List[str]:
        names = []
        if self.alt:
            names.append('Alt')
        if self.ctrl:
            names.append('Control')
        if self.meta:
            names.append('Meta')
        if self.shift:
            names.append('Shift')
        return names


class BaseEvent(TraceModel):
    """所有事件共有的信封字段"""

    timestamp: int = Field(default_factory=now_ms)
    page: PageContext = Field(default_factory=PageContext)
    recording_id: Optional[str] = None

    @field_validator('timestamp', mode='before')
    @classmethod
    def _round_timestamp(cls, value):
        if isinstance(value, float):
            return int(round(value))
        return value

    @field_validator('page', mode='before')
    @classmethod
    def _page_or_empty(cls, value):
        return value if value is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


class TargetedEvent(BaseEvent):
    """带候选选择器的事件"""

    selector: Optional[str] = None
    selectors: Tuple[str, ...] = ()

    @model_validator(mode='before')
    @classmethod
    def _fill_selectors(cls, data):
        # 只有selector的旧格式轨迹：补齐selectors；反之亦然
        if isinstance(data, dict):
            data = dict(data)
            selectors = [s for s in (data.get('selectors') or []) if s]
            if not selectors and data.get('selector'):
                selectors = [data['selector']]
            data['selectors'] = selectors
            if not data.get('selector') and selectors:
                data['selector'] = selectors[0]
        return data

    @property
    def candidates(self) -> List[str]:
        return list(self.selectors)


class ClickEvent(TargetedEvent):
    type: Literal['click'] = 'click'
    selector: str
    selectors: Annotated[Tuple[str, ...], Field(min_length=1)]
    button: Literal['left', 'right', 'middle'] = 'left'
    modifiers: Modifiers = Field(default_factory=Modifiers)

    @field_validator('button', mode='before')
    @classmethod
    def _button_from_index(cls, value):
        if isinstance(value, int):
            return MOUSE_BUTTONS.get(value, 'left')
        return value or 'left'


class FillEvent(TargetedEvent):
    type: Literal['fill'] = 'fill'
    selector: str
    selectors: Annotated[Tuple[str, ...], Field(min_length=1)]
    value: str = ''

    @field_validator('value', mode='before')
    @classmethod
    def _value_as_text(cls, value):
        return '' if value is None else str(value)


class PressEvent(TargetedEvent):
    type: Literal['press'] = 'press'
    key: str


class ScrollEvent(BaseEvent):
    type: Literal['scroll'] = 'scroll'
    x: float = 0
    y: float = 0

    @field_validator('x', 'y', mode='before')
    @classmethod
    def _zero_if_missing(cls, value):
        return value or 0


class ViewportEvent(BaseEvent):
    type: Literal['viewport'] = 'viewport'
    width: int = 0
    height: int = 0


class NavigateEvent(BaseEvent):
    type: Literal['navigate'] = 'navigate'
    url: str = ''
    kind: Literal['start', 'pushState', 'replaceState', 'popstate'] = 'start'


class UnknownEvent(BaseModel):
    """无法识别类型的事件，保留原始数据，回放时跳过"""

    model_config = ConfigDict(frozen=True)

    type: Any = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def page(self) -> PageContext:
        page = self.raw.get('page') if isinstance(self.raw, dict) else None
        try:
            return PageContext.model_validate(page or {})
        except Exception:
            return PageContext()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)


Event = Annotated[
    Union[ClickEvent, FillEvent, PressEvent, ScrollEvent, ViewportEvent, NavigateEvent],
    Field(discriminator='type'),
]
TraceEvent = Union[ClickEvent, FillEvent, PressEvent, ScrollEvent, ViewportEvent, NavigateEvent, UnknownEvent]

_event_adapter = TypeAdapter(Event)


def parse_event(raw: Any) -> TraceEvent:
    """解析单个事件；未知类型返回UnknownEvent"""
    if isinstance(raw, BaseModel):
        return raw
    if not isinstance(raw, dict):
        raise TraceFormatError(f"Event must be an object, got {type(raw).__name__}")
    if raw.get('type') not in EVENT_TYPES:
        return UnknownEvent(type=raw.get('type'), raw=raw)
    try:
        return _event_adapter.validate_python(raw)
    except Exception as e:
        raise TraceFormatError(f"Invalid {raw.get('type')} event: {e}", {'event': raw})


def parse_trace(raw_events: Any) -> List[TraceEvent]:
    """解析扁平事件数组"""
    if not isinstance(raw_events, list):
        raise TraceFormatError("Trace must be a JSON array of events")
    return [parse_event(raw) for raw in raw_events]


def dump_trace(events: Iterable[TraceEvent]) -> List[Dict[str, Any]]:
    return [event.to_dict() for event in events]


def load_trace(path: Union[str, Path]) -> List[TraceEvent]:
    """从文件加载轨迹"""
    trace_path = Path(path)
    try:
        with open(trace_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise TraceFormatError(f"Trace file not found: {trace_path}")
    except json.JSONDecodeError as e:
        raise TraceFormatError(f"Invalid JSON in trace file: {e}")
    return parse_trace(raw)


def save_trace(events: Iterable[TraceEvent], path: Union[str, Path]) -> Path:
    trace_path = Path(path)
    trace_path.parent.mkdir(parents=True, exist_ok=True)
    with open(trace_path, 'w', encoding='utf-8') as f:
        json.dump(dump_trace(events), f, ensure_ascii=False, indent=2)
    return trace_path


class Recording(TraceModel):
    """命名并持久化的轨迹"""

    id: str
    name: str
    saved_at: int = Field(default_factory=now_ms)
    thumbnail: Optional[str] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)

    def trace(self) -> List[TraceEvent]:
        return parse_trace(self.events)

    def summary(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'savedAt': self.saved_at,
            'thumbnail': self.thumbnail,
            'steps': len(self.events),
        }
