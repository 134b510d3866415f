"""
Playwright实例提供器
提供统一的浏览器会话获取接口：本地启动或通过CDP连接已有浏览器，支持可选的Playwright追踪
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from rich.console import Console

from action_recorder.errors import DriverConnectionError
from action_recorder.utils.config import Config

console = Console()


@dataclass
class BrowserSession:
    """一次驱动会话持有的全部Playwright对象"""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    # 通过CDP连接时浏览器不归本进程所有，关闭时只断开
    owns_browser: bool = True
    trace_output: Optional[str] = None


class PlaywrightProvider:
    """Playwright实例提供器"""

    def __init__(self):
        self._active_sessions = []

    async def open(
        self,
        headless: Optional[bool] = None,
        slow_mo: Optional[int] = None,
        viewport: Optional[Dict[str, int]] = None,
        cdp_url: Optional[str] = None,
        trace_output: Optional[str] = None,
    ) -> BrowserSession:
        """
        获取浏览器会话

        Args:
            headless: 是否以无头模式运行，默认取配置
            slow_mo: 每个Playwright操作之间的延迟（毫秒）
            viewport: 视口大小，如 {"width": 1280, "height": 800}
            cdp_url: 已有浏览器的CDP地址；指定时连接而不是启动
            trace_output: Playwright追踪文件输出路径（zip）

        Returns:
            BrowserSession: 浏览器、上下文、页面实例

        Raises:
            DriverConnectionError: 无法启动或连接浏览器
        """
        headless = Config.HEADLESS if headless is None else headless
        slow_mo = Config.SLOW_MO if slow_mo is None else slow_mo
        cdp_url = cdp_url or Config.CDP_URL
        viewport = viewport or {
            'width': Config.DEFAULT_VIEWPORT_WIDTH,
            'height': Config.DEFAULT_VIEWPORT_HEIGHT,
        }
        target = cdp_url or Config.DEFAULT_BROWSER

        playwright = await async_playwright().start()
        try:
            if cdp_url:
                session = await self._connect(playwright, cdp_url, slow_mo, viewport)
            else:
                session = await self._launch(playwright, headless, slow_mo, viewport)
        except DriverConnectionError:
            await playwright.stop()
            raise
        except Exception as e:
            await playwright.stop()
            console.print(f"❌ 浏览器启动失败: {e}", style="red")
            raise DriverConnectionError(target, e)

        if trace_output:
            await session.context.tracing.start(screenshots=True, snapshots=True, sources=False)
            session.trace_output = trace_output
            console.print(f"🎞️  Playwright追踪已开启: {trace_output}")

        self._active_sessions.append(session)
        console.print("✅ 浏览器实例已准备就绪")
        return session

    async def _launch(self, playwright: Playwright, headless: bool, slow_mo: int, viewport: Dict[str, int]) -> BrowserSession:
        console.print(f"🌐 启动浏览器: {Config.DEFAULT_BROWSER} ({'headless' if headless else 'headed'})")
        launcher = getattr(playwright, Config.DEFAULT_BROWSER, None)
        if launcher is None:
            raise DriverConnectionError(Config.DEFAULT_BROWSER)
        browser = await launcher.launch(headless=headless, slow_mo=slow_mo or None)
        context = await browser.new_context(viewport=viewport)
        page = await context.new_page()
        return BrowserSession(playwright, browser, context, page, owns_browser=True)

    async def _connect(self, playwright: Playwright, cdp_url: str, slow_mo: int, viewport: Dict[str, int]) -> BrowserSession:
        console.print(f"🔌 连接已有浏览器: {cdp_url}")
        browser = await playwright.chromium.connect_over_cdp(cdp_url, slow_mo=slow_mo or None)
        if browser.contexts:
            context = browser.contexts[0]
        else:
            context = await browser.new_context(viewport=viewport)
        page = context.pages[0] if context.pages else await context.new_page()
        return BrowserSession(playwright, browser, context, page, owns_browser=False)

    async def close(self, session: BrowserSession):
        """结束会话：保存追踪文件并释放资源"""
        if session.trace_output:
            try:
                output = Path(session.trace_output)
                output.parent.mkdir(parents=True, exist_ok=True)
                await session.context.tracing.stop(path=str(output))
                console.print(f"💾 追踪文件已保存: {output}")
            except Exception as e:
                console.print(f"⚠️  保存追踪文件失败: {e}", style="yellow")
        try:
            if session.owns_browser:
                await session.context.close()
                await session.browser.close()
        except Exception as e:
            console.print(f"⚠️  关闭浏览器失败: {e}", style="yellow")
        finally:
            await session.playwright.stop()
            if session in self._active_sessions:
                self._active_sessions.remove(session)


# 全局实例，便于直接导入使用
_provider_instance = PlaywrightProvider()


async def open_browser(**kwargs) -> BrowserSession:
    """获取浏览器会话的便捷函数，参数同 PlaywrightProvider.open"""
    return await _provider_instance.open(**kwargs)


async def close_browser(session: BrowserSession):
    await _provider_instance.close(session)
