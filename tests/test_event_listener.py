"""
页面宿主与导航观察者测试
"""

import asyncio
import unittest

from action_recorder.utils.event_listener import CAPTURE_SCRIPT, NavigationObserver, PlaywrightPageHost


class FakePage:
    """只实现页面宿主用到的Playwright页面方法"""

    def __init__(self):
        self.url = 'https://x.test/app'
        self.viewport_size = {'width': 1280, 'height': 800}
        self.bindings = {}
        self.init_scripts = []
        self.evaluated = []
        self.listeners = {}

    async def expose_binding(self, name, callback):
        self.bindings[name] = callback

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def evaluate(self, script, arg=None):
        self.evaluated.append(script)

    def on(self, event, callback):
        self.listeners[event] = callback

    async def title(self):
        return 'App'


class TestNavigationObserver(unittest.IsolatedAsyncioTestCase):
    """导航类型映射测试"""

    def test_kind_for(self):
        self.assertEqual(NavigationObserver.kind_for('push'), 'pushState')
        self.assertEqual(NavigationObserver.kind_for('replace'), 'replaceState')
        self.assertEqual(NavigationObserver.kind_for('traverse'), 'popstate')
        self.assertEqual(NavigationObserver.kind_for('popstate'), 'popstate')
        self.assertIsNone(NavigationObserver.kind_for('reload'))
        self.assertIsNone(NavigationObserver.kind_for(None))

    async def test_notify_ignores_reload(self):
        """重载不产生导航回调"""
        calls = []

        async def callback(kind, url, page):
            calls.append((kind, url))

        observer = NavigationObserver(callback)
        await observer.notify({'navigationType': 'reload', 'url': 'https://x.test/app'})
        await observer.notify({'navigationType': 'traverse', 'url': 'https://x.test/back'})
        self.assertEqual(calls, [('popstate', 'https://x.test/back')])


class TestPlaywrightPageHost(unittest.IsolatedAsyncioTestCase):
    """页面宿主测试"""

    async def asyncSetUp(self):
        self.page = FakePage()
        self.host = PlaywrightPageHost(self.page)
        self.order = []

        async def on_signal(signal):
            # 慢处理器：后到的信号也不能抢先
            await asyncio.sleep(0.01)
            if signal.get('fail'):
                raise RuntimeError('boom')
            self.order.append(signal['kind'])

        async def on_navigation(kind, url, page):
            self.order.append(f'navigate:{kind}')

        self.on_signal = on_signal
        self.on_navigation = on_navigation

    async def asyncTearDown(self):
        await self.host.detach()

    async def emit(self, payload):
        await self.page.bindings['__recorderEmit'](None, payload)

    async def test_attach_installs_once(self):
        """捕获脚本和回传通道只注入一次"""
        await self.host.attach(self.on_signal, self.on_navigation)
        await self.host.detach()
        await self.host.attach(self.on_signal, self.on_navigation)
        self.assertEqual(set(self.page.bindings), {'__recorderEmit', '__recorderSync'})
        self.assertEqual(self.page.init_scripts, [CAPTURE_SCRIPT])
        self.assertTrue(self.host.attached)
        self.assertTrue(await self.page.bindings['__recorderSync'](None))
        self.assertEqual(self.page.evaluated[-1], 'window.__recorderActive = true')

    async def test_signals_keep_arrival_order(self):
        """点击之后的pushState导航排在点击之后"""
        await self.host.attach(self.on_signal, self.on_navigation)
        await asyncio.gather(
            self.emit({'kind': 'click'}),
            self.emit({'kind': 'navigate', 'navigationType': 'push', 'url': 'https://x.test/next'}),
            self.emit({'kind': 'input'}),
        )
        await self.host.flush()
        self.assertEqual(self.order, ['click', 'navigate:pushState', 'input'])

    async def test_handler_errors_do_not_stop_queue(self):
        """某个信号处理失败不影响后续信号"""
        await self.host.attach(self.on_signal, self.on_navigation)
        await self.emit({'kind': 'click', 'fail': True})
        await self.emit({'kind': 'keydown'})
        await self.host.flush()
        self.assertEqual(self.order, ['keydown'])

    async def test_signals_dropped_when_detached(self):
        """未挂载或已卸载时信号被丢弃"""
        await self.host.install()
        await self.emit({'kind': 'click'})
        await self.host.attach(self.on_signal, self.on_navigation)
        await self.emit({'kind': 'click'})
        await self.emit('not a dict')
        await self.host.detach()
        await self.host.flush()
        self.assertEqual(self.order, [])
        self.assertFalse(self.host.attached)
        self.assertEqual(self.page.evaluated[-1], 'window.__recorderActive = false')

    async def test_page_context_and_viewport(self):
        await self.host.install()
        self.assertEqual(await self.host.page_context(), {'url': 'https://x.test/app', 'title': 'App'})
        self.assertEqual(await self.host.viewport(), {'width': 1280, 'height': 800})


if __name__ == '__main__':
    unittest.main()
