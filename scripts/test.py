#!/usr/bin/env python3
"""
运行项目测试
"""

import subprocess
import sys
from pathlib import Path

def run_tests():
    """运行所有测试"""
    print("🧪 运行项目测试...")

    test_files = list(Path("tests").glob("test_*.py"))
    if not test_files:
        print("⚠️  未找到测试文件")
        return False

    print(f"📋 运行单元测试 ({len(test_files)} 个文件)...")
    result = subprocess.run([sys.executable, "-m", "pytest", "tests/", "-v"],
                            capture_output=False)
    if result.returncode == 0:
        print("✅ 所有测试通过")
        return True
    print("❌ 单元测试失败")
    return False

if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
