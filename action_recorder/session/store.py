"""
轨迹存储
扁平的键值存储（后写覆盖）以及基于它的录制仓库
"""

import asyncio
import copy
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import aiofiles
import aiofiles.os
from rich.console import Console

from action_recorder.errors import RecordingNotFound
from action_recorder.recording.events import Recording, dump_trace, new_recording_id, now_ms

console = Console()

KEY_RECORDING = 'recorder.recording'
KEY_EVENTS = 'recorder.events'
KEY_SESSION_ID = 'recorder.session_id'
KEY_RECORDINGS = 'recorder.recordings'


class KeyValueStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any): ...


class MemoryStore:
    """内存键值存储（测试和一次性进程使用）"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any):
        self._data[key] = copy.deepcopy(value)


class JsonFileStore:
    """单个JSON文件的键值存储，每次写入整体落盘"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        async with aiofiles.open(self.path, 'r', encoding='utf-8') as f:
            content = await f.read()
        try:
            data = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            backup = await self._backup_corrupt()
            console.print(f"⚠️  存储文件损坏，已备份到 {backup}，按空存储处理 ({e})", style="yellow")
            data = {}
        self._data = data if isinstance(data, dict) else {}
        return self._data

    async def _backup_corrupt(self) -> Path:
        """损坏的文件改名保留，之后的写入不会覆盖它"""
        stamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        await aiofiles.os.replace(self.path, backup)
        return backup

    async def _write(self, data: Dict[str, Any]):
        """先写临时文件再整体替换，写入中断时原文件保持完整"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f"{self.path.name}.tmp")
        async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))
            await f.flush()
        await aiofiles.os.replace(temp_path, self.path)

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return default
            return copy.deepcopy(data[key])

    async def set(self, key: str, value: Any):
        async with self._lock:
            data = await self._load()
            data[key] = copy.deepcopy(value)
            await self._write(data)


def default_recording_name() -> str:
    return f"Recording {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"


def coerce_recording(recording_id: str, data: Any) -> Recording:
    """兼容旧格式：纯事件数组，或把savedAt/thumb放在meta里的对象"""
    if isinstance(data, list):
        return Recording(id=recording_id, name=recording_id, saved_at=0, events=data)
    if not isinstance(data, dict):
        return Recording(id=recording_id, name=recording_id, saved_at=0)
    meta = data.get('meta') or {}
    return Recording(
        id=data.get('id') or meta.get('id') or recording_id,
        name=data.get('name') or meta.get('name') or recording_id,
        saved_at=data.get('savedAt') or meta.get('savedAt') or 0,
        thumbnail=data.get('thumbnail') or meta.get('thumb'),
        events=data.get('events') or [],
    )


class RecordingRepository:
    """录制仓库：recorder.recordings 下 id → Recording"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _all(self) -> Dict[str, Any]:
        recordings = await self.store.get(KEY_RECORDINGS, {})
        return recordings if isinstance(recordings, dict) else {}

    async def save(
        self,
        events: List[Any],
        name: Optional[str] = None,
        thumbnail: Optional[str] = None,
        recording_id: Optional[str] = None,
        fallback_id: Optional[str] = None,
    ) -> Recording:
        """
        保存录制

        指定id时覆盖同id的录制；未指定id时覆盖同名录制；否则新建。

        Args:
            events: 事件（模型或字典）
            name: 名称，默认按当前时间生成
            thumbnail: 缩略图data URL
            recording_id: 显式指定的录制ID
            fallback_id: 没有显式ID时使用的ID（通常是当前会话ID）
        """
        recordings = await self._all()
        name = name or default_recording_name()
        target_id = recording_id or fallback_id or new_recording_id()
        for existing_id, data in recordings.items():
            existing = coerce_recording(existing_id, data)
            if (recording_id and existing_id == recording_id) or (not recording_id and existing.name == name):
                target_id = existing_id
                break

        raw_events = [e if isinstance(e, dict) else e.to_dict() for e in events]
        recording = Recording(id=target_id, name=name, saved_at=now_ms(), thumbnail=thumbnail, events=raw_events)
        recordings[target_id] = recording.model_dump(mode='json', by_alias=True)
        await self.store.set(KEY_RECORDINGS, recordings)
        console.print(f"💾 录制已保存: {name} ({target_id}, {len(raw_events)} 步)")
        return recording

    async def summaries(self) -> List[Dict[str, Any]]:
        """所有录制的摘要，最近保存的在前"""
        items = [coerce_recording(rid, data).summary() for rid, data in (await self._all()).items()]
        items.sort(key=lambda item: item['savedAt'] or 0, reverse=True)
        return items

    async def load(self, recording_id: str) -> Recording:
        recordings = await self._all()
        if recording_id not in recordings:
            raise RecordingNotFound(recording_id)
        return coerce_recording(recording_id, recordings[recording_id])

    async def delete(self, recording_id: str) -> bool:
        recordings = await self._all()
        if recording_id not in recordings:
            return False
        del recordings[recording_id]
        await self.store.set(KEY_RECORDINGS, recordings)
        console.print(f"🗑️  录制已删除: {recording_id}")
        return True

    async def rename(self, recording_id: str, name: str) -> Recording:
        recordings = await self._all()
        if recording_id not in recordings:
            raise RecordingNotFound(recording_id)
        recording = coerce_recording(recording_id, recordings[recording_id]).model_copy(update={'name': name})
        recordings[recording_id] = recording.model_dump(mode='json', by_alias=True)
        await self.store.set(KEY_RECORDINGS, recordings)
        return recording

    async def export(self, recording_id: str, path: Union[str, Path]) -> Path:
        """把录制的事件导出为扁平JSON轨迹文件"""
        recording = await self.load(recording_id)
        output = Path(path)
        output.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(output, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(dump_trace(recording.trace()), ensure_ascii=False, indent=2))
        console.print(f"📤 录制已导出: {output}")
        return output
