"""
存储与会话管理器测试
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from action_recorder.errors import RecordingNotFound
from action_recorder.execution.replayer import ReplayOptions
from action_recorder.session.manager import SessionManager
from action_recorder.session.store import (
    KEY_EVENTS,
    KEY_RECORDING,
    KEY_RECORDINGS,
    KEY_SESSION_ID,
    JsonFileStore,
    MemoryStore,
    RecordingRepository,
)

from helpers import FakePageHost, SoupSubstrate, signal_for

FORM = '<html><body><form><input id="q"><button id="submit">Go</button></form></body></html>'

EVENTS = [
    {'type': 'navigate', 'page': {'url': 'https://x.test/form', 'title': 'Form'}, 'url': 'https://x.test/form', 'kind': 'start'},
    {'type': 'click', 'page': {'url': 'https://x.test/form', 'title': 'Form'}, 'selector': '#submit', 'selectors': ['#submit']},
]


def fast_options() -> ReplayOptions:
    return ReplayOptions(resolve_timeout=0.2, poll_interval=0.01, settle_delay=0, scroll_settle=0)


class EchoSubstrate(SoupSubstrate):
    """fill之后像真实页面一样触发input信号"""

    def __init__(self, html: str, host: FakePageHost, **kwargs):
        super().__init__(html, **kwargs)
        self.html = html
        self.host = host

    async def fill(self, element, value: str):
        await super().fill(element, value)
        if self.host.on_signal is not None:
            await self.host.on_signal(signal_for('input', self.html, f"#{element['id']}", value=value))


class TestStores(unittest.IsolatedAsyncioTestCase):
    """键值存储测试"""

    def setUp(self):
        """测试前准备"""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """测试后清理"""
        shutil.rmtree(self.test_dir)

    async def test_memory_store_copies_values(self):
        """内存存储返回副本"""
        store = MemoryStore()
        self.assertEqual(await store.get('missing', []), [])
        value = [1]
        await store.set('k', value)
        value.append(2)
        loaded = await store.get('k')
        loaded.append(3)
        self.assertEqual(await store.get('k'), [1])

    async def test_json_file_store_persists(self):
        """JSON文件存储在实例之间持久化"""
        path = Path(self.test_dir) / 'nested' / 'store.json'
        store = JsonFileStore(path)
        await store.set(KEY_RECORDING, True)
        await store.set(KEY_EVENTS, EVENTS)
        with open(path, 'r', encoding='utf-8') as f:
            self.assertTrue(json.load(f)[KEY_RECORDING])

        reopened = JsonFileStore(path)
        self.assertTrue(await reopened.get(KEY_RECORDING))
        self.assertEqual(await reopened.get(KEY_EVENTS), EVENTS)

    async def test_json_file_store_corrupt_file(self):
        """损坏的存储文件按空存储处理"""
        path = Path(self.test_dir) / 'store.json'
        path.write_text('{not json', encoding='utf-8')
        store = JsonFileStore(path)
        self.assertIsNone(await store.get(KEY_RECORDING))

    async def test_corrupt_file_is_backed_up_before_write(self):
        """写到一半的存储文件先备份，后续写入不会丢掉已保存的录制"""
        path = Path(self.test_dir) / 'store.json'
        store = JsonFileStore(path)
        await store.set(KEY_RECORDINGS, {'r1': {'id': 'r1', 'name': 'a', 'savedAt': 1, 'events': EVENTS}})
        content = path.read_text(encoding='utf-8')
        path.write_text(content[:len(content) // 2], encoding='utf-8')

        reopened = JsonFileStore(path)
        await reopened.set(KEY_RECORDING, True)
        with open(path, 'r', encoding='utf-8') as f:
            self.assertEqual(json.load(f), {KEY_RECORDING: True})
        backups = list(Path(self.test_dir).glob('store.json.corrupt-*'))
        self.assertEqual(len(backups), 1)
        self.assertEqual(backups[0].read_text(encoding='utf-8'), content[:len(content) // 2])

    async def test_writes_replace_file(self):
        """写入通过临时文件整体替换，不留下临时文件"""
        path = Path(self.test_dir) / 'store.json'
        store = JsonFileStore(path)
        await store.set(KEY_EVENTS, EVENTS)
        await store.set(KEY_RECORDING, False)
        self.assertEqual(sorted(p.name for p in Path(self.test_dir).iterdir()), ['store.json'])
        with open(path, 'r', encoding='utf-8') as f:
            self.assertEqual(json.load(f), {KEY_EVENTS: EVENTS, KEY_RECORDING: False})


class TestRecordingRepository(unittest.IsolatedAsyncioTestCase):
    """录制仓库测试"""

    async def asyncSetUp(self):
        self.store = MemoryStore()
        self.repository = RecordingRepository(self.store)

    async def test_save_overwrites_by_name(self):
        """未指定id时同名录制被覆盖"""
        first = await self.repository.save(EVENTS, name='登录')
        second = await self.repository.save(EVENTS[:1], name='登录')
        self.assertEqual(first.id, second.id)
        items = await self.repository.summaries()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]['steps'], 1)

    async def test_save_overwrites_by_id(self):
        """指定id时覆盖该录制（即使名称不同）"""
        first = await self.repository.save(EVENTS, name='a')
        await self.repository.save(EVENTS[:1], name='b', recording_id=first.id)
        items = await self.repository.summaries()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]['name'], 'b')

    async def test_save_new_recording(self):
        """不同名称新建录制，默认名称按时间生成"""
        await self.repository.save(EVENTS, name='a')
        unnamed = await self.repository.save(EVENTS)
        self.assertTrue(unnamed.name.startswith('Recording '))
        self.assertEqual(len(await self.repository.summaries()), 2)

    async def test_load_legacy_formats(self):
        """兼容纯数组和meta格式"""
        await self.store.set(KEY_RECORDINGS, {
            'old-1': EVENTS,
            'old-2': {'id': 'old-2', 'name': '旧录制', 'events': EVENTS,
                      'meta': {'savedAt': 10, 'thumb': 'data:image/png;base64,AA=='}},
        })
        self.assertEqual(len((await self.repository.load('old-1')).events), 2)
        legacy = await self.repository.load('old-2')
        self.assertEqual(legacy.saved_at, 10)
        self.assertEqual(legacy.thumbnail, 'data:image/png;base64,AA==')
        self.assertEqual(legacy.name, '旧录制')

    async def test_load_missing(self):
        """录制不存在"""
        with self.assertRaises(RecordingNotFound):
            await self.repository.load('nope')

    async def test_rename_and_delete(self):
        """重命名和删除"""
        recording = await self.repository.save(EVENTS, name='a')
        renamed = await self.repository.rename(recording.id, 'b')
        self.assertEqual(renamed.name, 'b')
        self.assertEqual((await self.repository.load(recording.id)).name, 'b')
        self.assertTrue(await self.repository.delete(recording.id))
        self.assertFalse(await self.repository.delete(recording.id))
        self.assertEqual(await self.repository.summaries(), [])


class TestSessionManager(unittest.IsolatedAsyncioTestCase):
    """会话管理器测试"""

    async def asyncSetUp(self):
        """测试前准备"""
        self.test_dir = tempfile.mkdtemp()
        self.store = MemoryStore()
        self.host = FakePageHost(url='https://x.test/form', title='Form')
        self.manager = SessionManager(self.store, host=self.host, replay_options=fast_options())

    async def asyncTearDown(self):
        """测试后清理"""
        await self.manager.stop()
        shutil.rmtree(self.test_dir)

    async def test_start_records_into_store(self):
        """开始录制后事件写入存储"""
        result = await self.manager.start()
        self.assertTrue(result.ok)
        recording_id = result.payload['recordingId']
        self.assertEqual(await self.store.get(KEY_SESSION_ID), recording_id)

        await self.host.on_signal(signal_for('click', FORM, '#submit', button=0))
        events = (await self.manager.get_events()).to_dict()
        self.assertTrue(events['ok'])
        self.assertTrue(events['recording'])
        self.assertEqual([e['type'] for e in events['events']], ['viewport', 'navigate', 'click'])
        self.assertEqual(events['events'][2]['recordingId'], recording_id)

    async def test_stop_and_clear(self):
        """停止录制不清空轨迹；clear清空"""
        await self.manager.start()
        await self.manager.stop()
        events = await self.manager.get_events()
        self.assertFalse(events.payload['recording'])
        self.assertEqual(len(events.payload['events']), 2)
        await self.manager.clear()
        self.assertEqual((await self.manager.get_events()).payload['events'], [])

    async def test_save_list_load_rename_delete(self):
        """录制的完整管理流程"""
        await self.manager.start()
        await self.manager.stop()
        saved = await self.manager.save_recording(name='搜索', thumbnail='data:image/jpeg;base64,AA==')
        self.assertTrue(saved.ok)
        recording_id = saved.payload['id']
        self.assertEqual(recording_id, await self.store.get(KEY_SESSION_ID))

        items = (await self.manager.list_recordings()).payload['items']
        self.assertEqual([i['name'] for i in items], ['搜索'])
        self.assertEqual(items[0]['thumbnail'], 'data:image/jpeg;base64,AA==')

        loaded = await self.manager.load_recording(recording_id)
        self.assertEqual(len(loaded.payload['events']), 2)

        renamed = await self.manager.rename_recording(recording_id, '搜索2')
        self.assertEqual(renamed.payload['name'], '搜索2')

        export_path = Path(self.test_dir) / 'out' / 'trace.json'
        exported = await self.manager.export_recording(recording_id, str(export_path))
        self.assertTrue(exported.ok)
        with open(export_path, 'r', encoding='utf-8') as f:
            self.assertEqual([e['type'] for e in json.load(f)], ['viewport', 'navigate'])

        deleted = await self.manager.delete_recording(recording_id)
        self.assertTrue(deleted.payload['deleted'])
        missing = await self.manager.load_recording(recording_id)
        self.assertFalse(missing.ok)
        self.assertEqual(missing.error, f'Recording not found: {recording_id}')

    async def test_dispatch(self):
        """按action路由消息"""
        self.assertEqual(await self.manager.dispatch({'action': 'ping'}), {'ok': True, 'status': 'ready'})
        self.assertEqual(await self.manager.dispatch({'action': 'explode'}), {'ok': False, 'error': 'Unknown action'})
        self.assertEqual(await self.manager.dispatch('ping'), {'ok': False, 'error': 'Unknown action'})

        await self.store.set(KEY_EVENTS, EVENTS)
        saved = await self.manager.dispatch({'type': 'RECORDER_CONTROL', 'action': 'saveRecording',
                                             'name': '消息', 'thumb': 'data:x'})
        self.assertTrue(saved['ok'])
        listed = await self.manager.dispatch({'action': 'listRecordings'})
        self.assertEqual(listed['items'][0]['thumbnail'], 'data:x')

        bad = await self.manager.dispatch({'action': 'loadRecording'})
        self.assertFalse(bad['ok'])

    async def test_sync_state_resumes_capture(self):
        """按存储标志恢复录制（页面重载后）"""
        await self.manager.start()
        session_id = await self.store.get(KEY_SESSION_ID)

        host = FakePageHost(url='https://x.test/form')
        reloaded = SessionManager(self.store, host=host)
        result = await reloaded.sync_state()
        self.assertTrue(result.payload['recording'])
        self.assertTrue(reloaded.capture.is_recording)
        self.assertEqual(reloaded.capture.session.session_id, session_id)
        self.assertEqual(len(await self.store.get(KEY_EVENTS)), 2)

        await self.store.set(KEY_RECORDING, False)
        result = await reloaded.sync_state()
        self.assertFalse(result.payload['recording'])
        self.assertFalse(reloaded.capture.is_recording)

    async def test_replay_inline(self):
        """页面内回放当前轨迹"""
        substrate = SoupSubstrate(FORM, url='https://x.test/form', supports_navigation=False)
        manager = SessionManager(self.store, host=self.host, substrate=substrate, replay_options=fast_options())
        result = await manager.replay_inline(EVENTS)
        self.assertTrue(result.ok)
        self.assertEqual(substrate.actions, [('click', 'submit', 'left')])
        self.assertTrue(result.payload['report']['ok'])

    async def test_replay_inline_while_recording(self):
        """录制中页面内回放同一fill两次，只录下一个fill"""
        substrate = EchoSubstrate(FORM, self.host, url='https://x.test/form', supports_navigation=False)
        manager = SessionManager(self.store, host=self.host, substrate=substrate, replay_options=fast_options())
        await manager.start()
        fill = {'type': 'fill', 'page': {'url': 'https://x.test/form', 'title': 'Form'},
                'selector': '#q', 'selectors': ['#q'], 'value': 'hello'}
        result = await manager.replay_inline([fill, fill])
        self.assertTrue(result.ok)
        self.assertEqual(substrate.actions, [('fill', 'q', 'hello'), ('fill', 'q', 'hello')])

        events = (await manager.get_events()).payload['events']
        self.assertEqual([e['type'] for e in events], ['viewport', 'navigate', 'fill'])
        self.assertEqual(events[2]['value'], 'hello')
        await manager.stop()

    async def test_replay_inline_host_mismatch(self):
        """host不一致时返回错误"""
        substrate = SoupSubstrate(FORM, url='https://y.test/form', supports_navigation=False)
        manager = SessionManager(self.store, substrate=substrate, replay_options=fast_options())
        result = await manager.replay_inline(EVENTS)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, 'Host mismatch: current y.test, recording x.test')
        self.assertEqual(substrate.actions, [])

    async def test_start_without_page(self):
        """没有页面时不能录制"""
        manager = SessionManager(self.store)
        result = await manager.start()
        self.assertFalse(result.ok)
        self.assertIn('No page attached', result.error)

    async def test_diagnose(self):
        """诊断信息"""
        await self.manager.start()
        result = await self.manager.diagnose()
        info = result.payload['info']
        self.assertTrue(info['recording'])
        self.assertEqual(info['events'], 2)
        self.assertTrue(info['captureActive'])


if __name__ == '__main__':
    unittest.main()
