"""错误处理工具模块.

将导出核心的异常映射为面向用户的提示信息。核心层不做任何自动重试，
“重试”只能由用户显式触发。
"""

from __future__ import annotations

from typing import Any

from poster_studio.utils.exceptions import AppException, ErrorKind
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# 错误消息映射
ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.PERMISSION_DENIED: "需要存储权限才能保存作品，请在系统设置中授权",
    ErrorKind.INVALID_CANVAS: "画布内容不完整，请检查尺寸和背景后重试",
    ErrorKind.UNSUPPORTED_PROFILE: "当前设备不支持所选的格式或分辨率，请更换输出设置",
    ErrorKind.ENCODE_ERROR: "视频编码失败，请稍后手动重试",
    ErrorKind.DECODE_ERROR: "无法读取源文件，请确认文件未损坏",
    ErrorKind.IO_ERROR: "文件保存失败，请检查存储空间",
    ErrorKind.CANCELLED: "已取消导出",
    ErrorKind.ALREADY_PROCESSING: "该作品正在导出中，请等待完成",
    ErrorKind.CONFIG_ERROR: "配置错误，请检查配置文件",
    ErrorKind.DATABASE_ERROR: "导出记录保存失败",
}

# 允许用户手动重试的错误类别
RETRYABLE_BY_USER: frozenset[ErrorKind] = frozenset({
    ErrorKind.ENCODE_ERROR,
    ErrorKind.DECODE_ERROR,
    ErrorKind.IO_ERROR,
    ErrorKind.CANCELLED,
})


def get_error_kind(exception: BaseException) -> ErrorKind:
    """获取异常对应的错误类别."""
    if isinstance(exception, AppException):
        return exception.kind
    if isinstance(exception, OSError):
        return ErrorKind.IO_ERROR
    return ErrorKind.UNKNOWN


def get_user_friendly_message(exception: BaseException) -> str:
    """获取用户友好的错误消息.

    Args:
        exception: 异常对象

    Returns:
        用户友好的错误消息
    """
    kind = get_error_kind(exception)
    if kind in ERROR_MESSAGES:
        return ERROR_MESSAGES[kind]

    if isinstance(exception, AppException):
        return exception.message

    return "操作失败，请稍后重试"


def get_error_details(exception: BaseException) -> dict[str, Any]:
    """获取错误详细信息.

    Args:
        exception: 异常对象

    Returns:
        包含错误详情的字典
    """
    kind = get_error_kind(exception)
    details: dict[str, Any] = {
        "type": type(exception).__name__,
        "kind": kind.value,
        "message": str(exception),
        "user_message": get_user_friendly_message(exception),
        "can_retry": kind in RETRYABLE_BY_USER,
    }

    if isinstance(exception, AppException):
        details["code"] = exception.code

    errors = getattr(exception, "errors", None)
    if errors:
        details["errors"] = list(errors)

    return details


def log_exception(exception: BaseException, context: str = "") -> None:
    """按错误类别记录日志.

    取消属于正常流程，只记录 INFO；其他错误记录 ERROR。

    Args:
        exception: 异常对象
        context: 上下文描述
    """
    prefix = f"{context}: " if context else ""
    if get_error_kind(exception) == ErrorKind.CANCELLED:
        logger.info(f"{prefix}{exception}")
    elif isinstance(exception, AppException):
        logger.error(f"{prefix}{exception}")
    else:
        logger.exception(f"{prefix}未预期的异常: {exception}")
