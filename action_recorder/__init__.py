"""
网页操作录制与回放
"""

__version__ = "0.1.0"
