#!/usr/bin/env python3
"""
项目设置脚本
"""

import subprocess
import shutil
from pathlib import Path

def run_command(cmd, description):
    """运行命令并显示结果"""
    print(f"🔧 {description}...")
    try:
        result = subprocess.run(cmd, shell=True, check=True, capture_output=True, text=True)
        print(f"✅ {description} 完成")
        if result.stdout:
            print(result.stdout)
        return True
    except subprocess.CalledProcessError as e:
        print(f"❌ {description} 失败: {e}")
        if e.stderr:
            print(e.stderr)
        return False

def setup_environment():
    """设置开发环境"""
    print("🚀 开始设置网页操作录制与回放工具...")

    if not run_command("pip install -e .[test]", "安装Python依赖"):
        return False

    if not run_command("playwright install chromium", "安装Playwright浏览器"):
        return False

    env_example = Path(".env.example")
    env_file = Path(".env")

    if env_example.exists() and not env_file.exists():
        shutil.copy(env_example, env_file)
        print("✅ 已创建 .env 配置文件")
        print("📝 可在 .env 中调整浏览器、回放速度和存储路径")
    elif env_file.exists():
        print("ℹ️  .env 配置文件已存在")

    Path("recordings").mkdir(exist_ok=True)
    Path("traces").mkdir(exist_ok=True)
    print("✅ 已创建必要目录")

    print("\n🎉 环境设置完成！")
    print("\n📋 下一步:")
    print("1. 运行 action-recorder record --url https://example.com 录制操作")
    print("2. 运行 action-recorder list 查看录制")
    print("3. 运行 action-recorder replay --recording <ID> 回放")

    return True

if __name__ == "__main__":
    setup_environment()
