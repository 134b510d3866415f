"""
会话管理器
录制/回放的命令入口：驱动捕获状态机，把轨迹写入存储，管理已保存的录制
"""

import functools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from rich.console import Console

from action_recorder.errors import RecorderError
from action_recorder.execution.replayer import ReplayEngine, ReplayOptions
from action_recorder.execution.substrates import InPageSubstrate, ReplaySubstrate
from action_recorder.recording.capture import EventCapture
from action_recorder.recording.events import BaseEvent, parse_trace
from action_recorder.session.store import (
    KEY_EVENTS,
    KEY_RECORDING,
    KEY_SESSION_ID,
    KeyValueStore,
    MemoryStore,
    RecordingRepository,
)
from action_recorder.utils.config import Config

console = Console()


@dataclass
class CommandResult:
    """命令返回信封 {ok, error?, ...payload}"""

    ok: bool = True
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {'ok': self.ok}
        if self.error is not None:
            result['error'] = self.error
        result.update(self.payload)
        return result


def command(func: Callable):
    """把命令的返回值包装成CommandResult，异常转为 ok=False"""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> CommandResult:
        try:
            payload = await func(self, *args, **kwargs)
        except RecorderError as e:
            console.print(f"❌ {func.__name__} 失败: {e.message}", style="red")
            return CommandResult(ok=False, error=e.message)
        except Exception as e:
            console.print(f"❌ {func.__name__} 失败: {e}", style="red")
            return CommandResult(ok=False, error=str(e))
        if isinstance(payload, CommandResult):
            return payload
        return CommandResult(ok=True, payload=payload or {})

    return wrapper


class SessionManager:
    """会话管理器"""

    # 消息action → 方法名
    ACTIONS = {
        'start': 'start',
        'stop': 'stop',
        'clear': 'clear',
        'getEvents': 'get_events',
        'saveRecording': 'save_recording',
        'listRecordings': 'list_recordings',
        'loadRecording': 'load_recording',
        'deleteRecording': 'delete_recording',
        'renameRecording': 'rename_recording',
        'exportRecording': 'export_recording',
        'replayInline': 'replay_inline',
        'diagnose': 'diagnose',
        'ping': 'ping',
        'syncState': 'sync_state',
    }

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        host=None,
        substrate: Optional[ReplaySubstrate] = None,
        replay_options: Optional[ReplayOptions] = None,
    ):
        """
        Args:
            store: 键值存储，默认内存存储
            host: 录制宿主（PageHost）；为None时不能录制
            substrate: 页面内回放环境；为None时尝试用宿主的页面创建
            replay_options: 回放参数，默认取配置
        """
        self.store = store or MemoryStore()
        self.repository = RecordingRepository(self.store)
        self.host = host
        self.substrate = substrate
        self.replay_options = replay_options
        self.capture: Optional[EventCapture] = None
        if host is not None:
            self.capture = EventCapture(
                host,
                on_event=self._append_event,
                scroll_debounce=Config.SCROLL_DEBOUNCE_MS / 1000,
            )
        self._engine: Optional[ReplayEngine] = None

    def _require_capture(self) -> EventCapture:
        if self.capture is None:
            raise RecorderError("No page attached for recording")
        return self.capture

    async def _append_event(self, event: BaseEvent):
        events = await self.store.get(KEY_EVENTS, []) or []
        events.append(event.to_dict())
        await self.store.set(KEY_EVENTS, events)

    async def _events(self) -> List[Dict[str, Any]]:
        events = await self.store.get(KEY_EVENTS, [])
        return events if isinstance(events, list) else []

    @command
    async def start(self):
        capture = self._require_capture()
        if capture.is_recording:
            return {'recordingId': capture.session.session_id}
        await self.store.set(KEY_RECORDING, True)
        await self.store.set(KEY_EVENTS, [])
        session_id = await capture.start()
        await self.store.set(KEY_SESSION_ID, session_id)
        return {'recordingId': session_id}

    @command
    async def stop(self):
        await self.store.set(KEY_RECORDING, False)
        if self.capture is not None:
            await self.capture.stop()
        return {}

    @command
    async def clear(self):
        await self.store.set(KEY_EVENTS, [])
        if self.capture is not None:
            self.capture.clear()
        return {}

    @command
    async def get_events(self):
        return {
            'events': await self._events(),
            'recording': bool(await self.store.get(KEY_RECORDING, False)),
        }

    @command
    async def save_recording(self, name: Optional[str] = None, thumbnail: Optional[str] = None, id: Optional[str] = None):
        recording = await self.repository.save(
            await self._events(),
            name=name,
            thumbnail=thumbnail,
            recording_id=id,
            fallback_id=await self.store.get(KEY_SESSION_ID),
        )
        return {'id': recording.id, 'name': recording.name}

    @command
    async def list_recordings(self):
        return {'items': await self.repository.summaries()}

    @command
    async def load_recording(self, id: str):
        recording = await self.repository.load(id)
        return {'events': recording.events, 'recording': recording.summary()}

    @command
    async def delete_recording(self, id: str):
        return {'deleted': await self.repository.delete(id)}

    @command
    async def rename_recording(self, id: str, name: str):
        if not name:
            raise RecorderError("Recording name must not be empty")
        recording = await self.repository.rename(id, name)
        return {'id': recording.id, 'name': recording.name}

    @command
    async def export_recording(self, id: str, path: Union[str, Path]):
        output = await self.repository.export(id, path)
        return {'path': str(output)}

    @command
    async def replay_inline(self, events: Optional[List[Any]] = None):
        """在当前页面内回放；不传events时回放当前轨迹"""
        substrate = self._inline_substrate()
        trace = parse_trace(events if events is not None else await self._events())
        self._engine = ReplayEngine(substrate, self.replay_options or Config.replay_options())
        try:
            report = await self._engine.run(trace)
        finally:
            self._engine = None
        if not report.ok:
            return CommandResult(ok=False, error=report.summary(), payload={'report': report.to_dict()})
        return {'report': report.to_dict()}

    def cancel_replay(self) -> bool:
        if self._engine is None:
            return False
        self._engine.cancel()
        return True

    def _inline_substrate(self) -> ReplaySubstrate:
        if self.substrate is not None:
            return self.substrate
        page = getattr(self.host, 'page', None)
        if page is None:
            raise RecorderError("No page attached for replay")
        self.substrate = InPageSubstrate(page)
        return self.substrate

    @command
    async def diagnose(self):
        info: Dict[str, Any] = {
            'recording': bool(await self.store.get(KEY_RECORDING, False)),
            'sessionId': await self.store.get(KEY_SESSION_ID),
            'events': len(await self._events()),
        }
        if self.host is not None and hasattr(self.host, 'diagnose'):
            info.update(await self.host.diagnose())
        return {'info': info}

    @command
    async def ping(self):
        return {'status': 'ready'}

    @command
    async def sync_state(self):
        """按存储中的录制标志恢复或停止捕获（页面重载、进程重启之后）"""
        flag = bool(await self.store.get(KEY_RECORDING, False))
        if self.capture is not None:
            if flag and not self.capture.is_recording:
                session_id = await self.store.get(KEY_SESSION_ID)
                if session_id:
                    await self.capture.resume(session_id, parse_trace(await self._events()))
                else:
                    session_id = await self.capture.start()
                    await self.store.set(KEY_SESSION_ID, session_id)
            elif not flag and self.capture.is_recording:
                await self.capture.stop()
        return {'recording': flag}

    async def dispatch(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        按消息的action路由命令

        Args:
            message: {"action": "saveRecording", "name": ..., ...}

        Returns:
            Dict: {ok, error?, ...payload}
        """
        if not isinstance(message, dict):
            return CommandResult(ok=False, error="Unknown action").to_dict()
        method_name = self.ACTIONS.get(message.get('action'))
        if method_name is None:
            return CommandResult(ok=False, error="Unknown action").to_dict()

        params = {k: v for k, v in message.items() if k not in ('action', 'type')}
        if 'thumb' in params and 'thumbnail' not in params:
            params['thumbnail'] = params.pop('thumb')
        # 参数不匹配的TypeError由command包装成 ok=False
        result = await getattr(self, method_name)(**params)
        return result.to_dict()
