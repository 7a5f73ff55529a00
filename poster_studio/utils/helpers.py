"""辅助函数模块.

提供各种通用辅助函数。
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_uuid() -> str:
    """生成 UUID.

    Returns:
        UUID 字符串
    """
    return str(uuid.uuid4())


def generate_short_id(length: int = 8) -> str:
    """生成短 ID.

    Args:
        length: ID 长度

    Returns:
        短 ID 字符串
    """
    return uuid.uuid4().hex[:length]


def utc_now() -> datetime:
    """获取当前 UTC 时间（带时区）."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """获取当前 UTC 时间的 ISO 8601 字符串."""
    return utc_now().isoformat()


def format_duration(seconds: float) -> str:
    """格式化时间间隔.

    Args:
        seconds: 秒数

    Returns:
        格式化后的时间字符串
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def clamp(value: float, min_val: float, max_val: float) -> float:
    """限制值在指定范围内.

    Args:
        value: 原始值
        min_val: 最小值
        max_val: 最大值

    Returns:
        限制后的值
    """
    return max(min_val, min(value, max_val))
