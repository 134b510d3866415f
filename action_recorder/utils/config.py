"""
配置管理模块
加载和验证环境变量配置
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# 加载.env文件
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """配置管理类"""

    # 浏览器配置
    DEFAULT_BROWSER: str = os.getenv('DEFAULT_BROWSER', 'chromium')
    DEFAULT_VIEWPORT_WIDTH: int = int(os.getenv('DEFAULT_VIEWPORT_WIDTH', '1280'))
    DEFAULT_VIEWPORT_HEIGHT: int = int(os.getenv('DEFAULT_VIEWPORT_HEIGHT', '800'))
    HEADLESS: bool = _env_bool('HEADLESS', False)
    SLOW_MO: int = int(os.getenv('SLOWMO', '0'))
    CDP_URL: Optional[str] = os.getenv('CDP_URL') or None
    TRACE_OUTPUT: Optional[str] = os.getenv('TRACE_OUTPUT') or None

    # 回放配置（毫秒）
    SPEED: float = float(os.getenv('REPLAY_SPEED', '1.0'))
    RESOLVE_TIMEOUT_MS: int = int(os.getenv('RESOLVE_TIMEOUT_MS', '15000'))
    POLL_INTERVAL_MS: int = int(os.getenv('POLL_INTERVAL_MS', '100'))
    SETTLE_MS: int = int(os.getenv('SETTLE_MS', '250'))
    SCROLL_SETTLE_MS: int = int(os.getenv('SCROLL_SETTLE_MS', '200'))

    # 录制配置
    SCROLL_DEBOUNCE_MS: int = int(os.getenv('SCROLL_DEBOUNCE_MS', '200'))

    # 存储配置
    STORE_PATH: str = os.getenv('STORE_PATH', 'recordings/store.json')

    @classmethod
    def replay_options(cls, **overrides):
        """根据环境配置构建回放参数"""
        # 延迟导入避免循环导入
        from action_recorder.execution.replayer import ReplayOptions

        options = dict(
            resolve_timeout=cls.RESOLVE_TIMEOUT_MS / 1000,
            poll_interval=cls.POLL_INTERVAL_MS / 1000,
            settle_delay=cls.SETTLE_MS / 1000,
            scroll_settle=cls.SCROLL_SETTLE_MS / 1000,
            speed=cls.SPEED,
        )
        options.update({k: v for k, v in overrides.items() if v is not None})
        return ReplayOptions(**options)

    @classmethod
    def get_browser_config_status(cls) -> str:
        """获取浏览器配置状态描述"""
        if cls.CDP_URL:
            return f"🔌 CDP: {cls.CDP_URL}"
        mode = "headless" if cls.HEADLESS else "headed"
        return f"✅ Browser: {cls.DEFAULT_BROWSER} ({mode})"

    @classmethod
    def ensure_directories(cls):
        """确保必要的目录存在"""
        Path(cls.STORE_PATH).parent.mkdir(parents=True, exist_ok=True)
