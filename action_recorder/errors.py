"""
异常定义
录制与回放过程中使用的错误类型
"""

from typing import Any, Dict, List, Optional


class RecorderError(Exception):
    """录制/回放错误基类"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ResolutionTimeout(RecorderError):
    """在超时时间内没有任何候选选择器命中可见元素"""

    def __init__(self, selectors: List[str], timeout: float):
        self.selectors = list(selectors)
        self.timeout = timeout
        super().__init__(
            f"Element not found for selectors: {' | '.join(self.selectors)} (timeout {timeout:g}s)",
            {"selectors": self.selectors, "timeout": timeout},
        )


class HostMismatch(RecorderError):
    """回放环境的host与录制时的host不一致"""

    def __init__(self, recorded: str, current: str):
        self.recorded = recorded
        self.current = current
        super().__init__(
            f"Host mismatch: current {current}, recording {recorded}",
            {"recorded": recorded, "current": current},
        )


class UnsupportedEventType(RecorderError):
    """未知的事件类型（非致命，跳过）"""

    def __init__(self, event_type: Any):
        self.event_type = event_type
        super().__init__(f"Unsupported event type: {event_type!r}", {"type": event_type})


class DriverConnectionError(RecorderError):
    """无法启动或连接自动化驱动的浏览器"""

    def __init__(self, target: str, cause: Optional[BaseException] = None):
        self.target = target
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Cannot connect to browser ({target}){detail}", {"target": target})


class ReplayCancelled(RecorderError):
    """回放被取消"""

    def __init__(self, index: Optional[int] = None):
        self.index = index
        super().__init__("Replay cancelled", {"index": index})


class TraceFormatError(RecorderError):
    """轨迹文件格式错误"""


class RecordingNotFound(RecorderError):
    """录制不存在"""

    def __init__(self, recording_id: str):
        self.recording_id = recording_id
        super().__init__(f"Recording not found: {recording_id}", {"id": recording_id})
