#!/usr/bin/env python3
"""
网页操作录制与回放
主入口文件 - 命令行界面
"""

from action_recorder.cli.interface import cli

if __name__ == "__main__":
    cli()
