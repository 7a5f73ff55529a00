"""自定义异常类."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """错误类别.

    导出核心对外暴露的错误分类，调用方据此展示提示信息。
    """

    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_CANVAS = "INVALID_CANVAS"
    UNSUPPORTED_PROFILE = "UNSUPPORTED_PROFILE"
    ENCODE_ERROR = "ENCODE_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    IO_ERROR = "IO_ERROR"
    CANCELLED = "CANCELLED"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    CONFIG_ERROR = "CONFIG_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    UNKNOWN = "UNKNOWN"


class AppException(Exception):
    """应用基础异常类.

    所有自定义异常都应继承此类。

    Attributes:
        message: 错误消息
        code: 错误代码
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        """初始化异常.

        Args:
            message: 错误消息
            code: 错误代码，默认使用错误类别
        """
        self.message = message
        self.code = code or self.kind.value
        super().__init__(self.message)

    def __str__(self) -> str:
        """返回异常字符串表示."""
        return f"[{self.code}] {self.message}"


# ===================
# 权限与输入校验
# ===================
class PermissionDeniedError(AppException):
    """存储权限被拒绝异常."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, message: str = "存储权限被拒绝，无法保存导出文件") -> None:
        super().__init__(message)


class InvalidCanvasError(AppException):
    """画布无效异常.

    Attributes:
        errors: 具体的校验错误列表
    """

    kind = ErrorKind.INVALID_CANVAS

    def __init__(self, errors: Sequence[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("画布无效: " + "; ".join(self.errors))


class UnsupportedProfileError(AppException):
    """编码配置不受支持异常."""

    kind = ErrorKind.UNSUPPORTED_PROFILE

    def __init__(self, profile: str, reason: str = "") -> None:
        self.profile = profile
        msg = f"设备编码器不支持该输出配置: {profile}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


# ===================
# 编解码相关异常
# ===================
class EncodeError(AppException):
    """编码错误异常."""

    kind = ErrorKind.ENCODE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)


class EncodeFailureError(EncodeError):
    """静态图片编码或写入失败异常."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        msg = f"图片编码失败: {path}"
        if reason:
            msg += f", {reason}"
        super().__init__(msg)


class DecodeError(AppException):
    """解码错误异常."""

    kind = ErrorKind.DECODE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)


class AssetLoadError(DecodeError):
    """图层资源无法读取异常."""

    def __init__(self, uri: str, reason: str = "") -> None:
        self.uri = uri
        self.reason = reason
        msg = f"资源无法读取: {uri}"
        if reason:
            msg += f", {reason}"
        super().__init__(msg)


class OutputIOError(AppException):
    """输出文件读写异常."""

    kind = ErrorKind.IO_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)


# ===================
# 处理会话相关异常
# ===================
class ProcessingCancelledError(AppException):
    """处理已取消异常."""

    kind = ErrorKind.CANCELLED

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"视频处理已取消: {session_id}")


class AlreadyProcessingError(AppException):
    """画布已有进行中的处理会话异常."""

    kind = ErrorKind.ALREADY_PROCESSING

    def __init__(self, canvas_id: str, session_id: str) -> None:
        self.canvas_id = canvas_id
        self.session_id = session_id
        super().__init__(f"画布 {canvas_id} 正在处理中 (会话 {session_id})")


class ProcessingStateError(AppException):
    """非法的会话状态迁移异常."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"非法的状态迁移: {current} -> {target}", "PROCESSING_STATE_ERROR")


# ===================
# 配置与数据库
# ===================
class ConfigError(AppException):
    """配置错误异常."""

    kind = ErrorKind.CONFIG_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)


class DatabaseError(AppException):
    """数据库错误异常."""

    kind = ErrorKind.DATABASE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
