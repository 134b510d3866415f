"""
安装脚本
"""

from setuptools import setup, find_packages


setup(
    name="web-action-recorder",
    version="0.1.0",
    author="Web Automation Team",
    description="网页操作录制与回放 - 把页面交互录制为轨迹并在页面内或通过Playwright重放",
    long_description="网页操作录制与回放 - 把页面交互录制为轨迹并在页面内或通过Playwright重放",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["action_recorder", "action_recorder.*"]),
    py_modules=["main"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "playwright>=1.40.0",
        "click>=8.1.7",
        "aiofiles>=23.2.1",
        "pydantic>=2.5.1",
        "python-dotenv>=1.0.0",
        "rich>=13.7.0",
        "beautifulsoup4>=4.12.0",
        "soupsieve>=2.5",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "action-recorder=main:cli",
        ],
    },
)
