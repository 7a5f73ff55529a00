"""视频处理选项与处理会话模型."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from poster_studio.models.canvas import Canvas
from poster_studio.utils.exceptions import ErrorKind, ProcessingStateError
from poster_studio.utils.helpers import generate_uuid, utc_now


# ===================
# 枚举定义
# ===================


class OutputFormat(str, Enum):
    """输出容器格式."""

    MP4 = "mp4"
    MOV = "mov"
    AVI = "avi"


class VideoQuality(str, Enum):
    """输出质量档位."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"


class Resolution(str, Enum):
    """输出分辨率."""

    HD_720P = "720p"
    FHD_1080P = "1080p"
    UHD_4K = "4k"


class ProcessingState(str, Enum):
    """处理会话状态."""

    IDLE = "idle"
    ACQUIRING_PERMISSION = "acquiring_permission"
    CAPTURING_OVERLAY = "capturing_overlay"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


# 分辨率 -> 横版像素尺寸（竖版画布时宽高互换）
RESOLUTION_DIMENSIONS: dict[Resolution, tuple[int, int]] = {
    Resolution.HD_720P: (1280, 720),
    Resolution.FHD_1080P: (1920, 1080),
    Resolution.UHD_4K: (3840, 2160),
}

# 质量档位 -> 默认视频码率 (kbps)
QUALITY_BITRATES: dict[VideoQuality, int] = {
    VideoQuality.LOW: 1000,
    VideoQuality.MEDIUM: 1500,
    VideoQuality.HIGH: 2000,
    VideoQuality.ULTRA: 4000,
}

DEFAULT_AUDIO_BITRATE_KBPS = 128

TERMINAL_STATES: frozenset[ProcessingState] = frozenset({
    ProcessingState.COMPLETE,
    ProcessingState.CANCELLED,
    ProcessingState.FAILED,
})

# 合法的状态迁移（取消与失败可从任一非终止状态到达）
_ABORT_STATES = {ProcessingState.CANCELLED, ProcessingState.FAILED}
ALLOWED_TRANSITIONS: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.IDLE: frozenset({ProcessingState.ACQUIRING_PERMISSION, *_ABORT_STATES}),
    ProcessingState.ACQUIRING_PERMISSION: frozenset({ProcessingState.CAPTURING_OVERLAY, *_ABORT_STATES}),
    ProcessingState.CAPTURING_OVERLAY: frozenset({ProcessingState.ENCODING, *_ABORT_STATES}),
    ProcessingState.ENCODING: frozenset({ProcessingState.FINALIZING, *_ABORT_STATES}),
    ProcessingState.FINALIZING: frozenset({ProcessingState.COMPLETE, *_ABORT_STATES}),
    ProcessingState.COMPLETE: frozenset(),
    ProcessingState.CANCELLED: frozenset(),
    ProcessingState.FAILED: frozenset(),
}

# 状态 -> 步骤描述
STEP_LABELS: dict[ProcessingState, str] = {
    ProcessingState.IDLE: "等待开始",
    ProcessingState.ACQUIRING_PERMISSION: "请求存储权限",
    ProcessingState.CAPTURING_OVERLAY: "捕获叠加层",
    ProcessingState.ENCODING: "编码视频",
    ProcessingState.FINALIZING: "写入输出文件",
    ProcessingState.COMPLETE: "处理完成",
    ProcessingState.CANCELLED: "已取消",
    ProcessingState.FAILED: "处理失败",
}


# ===================
# 处理选项
# ===================


class ProcessingOptions(BaseModel):
    """视频处理选项.

    Attributes:
        output_format: 输出容器格式
        quality: 质量档位
        resolution: 输出分辨率
        video_bitrate_kbps: 视频码率，未指定时按质量档位取默认值
        audio_bitrate_kbps: 音频码率
        watermark: 是否添加水印
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    output_format: OutputFormat = Field(default=OutputFormat.MP4, description="输出格式")
    quality: VideoQuality = Field(default=VideoQuality.MEDIUM, description="质量档位")
    resolution: Resolution = Field(default=Resolution.FHD_1080P, description="分辨率")
    video_bitrate_kbps: Optional[int] = Field(default=None, gt=0, description="视频码率")
    audio_bitrate_kbps: int = Field(
        default=DEFAULT_AUDIO_BITRATE_KBPS,
        gt=0,
        description="音频码率",
    )
    watermark: bool = Field(default=True, description="添加水印")

    @model_validator(mode="after")
    def fill_default_bitrate(self) -> "ProcessingOptions":
        """按质量档位补全视频码率."""
        if self.video_bitrate_kbps is None:
            self.video_bitrate_kbps = QUALITY_BITRATES[self.quality]
        return self

    @property
    def extension(self) -> str:
        """输出文件扩展名（含点号）."""
        return f".{self.output_format.value}"

    def output_size(self, canvas: Optional[Canvas] = None) -> tuple[int, int]:
        """计算输出帧尺寸.

        Args:
            canvas: 画布，竖版画布时宽高互换

        Returns:
            (宽, 高)
        """
        width, height = RESOLUTION_DIMENSIONS[self.resolution]
        if canvas is not None and canvas.is_portrait:
            return (height, width)
        return (width, height)

    def describe(self) -> str:
        """简短描述，用于日志."""
        return (
            f"{self.output_format.value}/{self.resolution.value}/{self.quality.value}"
            f" @ {self.video_bitrate_kbps}k+{self.audio_bitrate_kbps}k"
        )

    def to_dict(self) -> dict:
        """转换为字典（camelCase）."""
        return self.model_dump(mode="json", by_alias=True)


def recommended_processing_options(canvas: Canvas) -> ProcessingOptions:
    """根据画布复杂度推荐处理选项.

    Args:
        canvas: 画布

    Returns:
        推荐的处理选项
    """
    total_layers = len(canvas.layers)
    canvas_size = canvas.width * canvas.height

    if total_layers > 10 or canvas_size > 1920 * 1080:
        quality = VideoQuality.HIGH
    elif total_layers > 5:
        quality = VideoQuality.MEDIUM
    else:
        quality = VideoQuality.LOW

    if canvas_size >= 3840 * 2160:
        resolution = Resolution.UHD_4K
    elif canvas_size >= 1920 * 1080:
        resolution = Resolution.FHD_1080P
    else:
        resolution = Resolution.HD_720P

    return ProcessingOptions(
        output_format=OutputFormat.MP4,
        quality=quality,
        resolution=resolution,
        audio_bitrate_kbps=DEFAULT_AUDIO_BITRATE_KBPS,
    )


def estimate_processing_seconds(canvas: Canvas, duration_seconds: float) -> float:
    """粗略估计处理耗时（秒）.

    Args:
        canvas: 画布
        duration_seconds: 源视频时长

    Returns:
        预计耗时，最少 30 秒
    """
    canvas_size = canvas.width * canvas.height
    seconds = 30.0 + len(canvas.layers) * 5

    if canvas_size > 1920 * 1080:
        seconds += 20
    if canvas_size > 3840 * 2160:
        seconds += 40

    seconds += max(0.0, duration_seconds) * 2
    return max(30.0, seconds)


# ===================
# 进度与会话
# ===================


class ProcessingProgress(BaseModel):
    """处理进度快照.

    Attributes:
        session_id: 会话ID
        state: 当前状态
        progress: 进度百分比 (0-100)
        current_step: 当前步骤描述
        estimated_time_remaining: 预计剩余时间（秒）
        is_complete: 是否已结束
        frames_done: 已编码帧数
        total_frames: 总帧数
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str
    state: ProcessingState
    progress: float = Field(default=0.0, ge=0, le=100)
    current_step: str = ""
    estimated_time_remaining: float = Field(default=0.0, ge=0)
    is_complete: bool = False
    frames_done: int = 0
    total_frames: int = 0


class ProcessingSession(BaseModel):
    """视频处理会话.

    一次“画布 + 处理选项”的导出过程，按状态机推进：
    IDLE → ACQUIRING_PERMISSION → CAPTURING_OVERLAY → ENCODING → FINALIZING → COMPLETE，
    CANCELLED / FAILED 可从任一非终止状态到达。

    Attributes:
        id: 会话ID
        canvas_id: 画布ID
        canvas: 被处理的画布（不可变快照，不参与序列化）
        options: 处理选项
        state: 当前状态
        progress: 进度百分比（单调不减）
        current_step: 当前步骤描述
        estimated_time_remaining: 预计剩余时间（秒）
        frames_done: 已编码帧数
        total_frames: 总帧数
        output_path: 输出文件路径
        error_message: 错误信息
        error_kind: 错误类别
    """

    id: str = Field(default_factory=generate_uuid)
    canvas_id: str = Field(..., description="画布ID")
    canvas: Optional[Canvas] = Field(default=None, exclude=True, description="画布快照")
    options: ProcessingOptions = Field(default_factory=ProcessingOptions)
    state: ProcessingState = Field(default=ProcessingState.IDLE, description="会话状态")
    progress: float = Field(default=0.0, ge=0, le=100, description="处理进度")
    current_step: str = Field(default=STEP_LABELS[ProcessingState.IDLE])
    estimated_time_remaining: float = Field(default=0.0, ge=0)
    frames_done: int = Field(default=0, ge=0)
    total_frames: int = Field(default=0, ge=0)
    output_path: Optional[str] = Field(default=None, description="输出文件路径")
    error_message: Optional[str] = Field(default=None, description="错误信息")
    error_kind: Optional[ErrorKind] = Field(default=None, description="错误类别")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def fill_canvas_id(cls, data):
        """只传入画布时从画布取ID."""
        if isinstance(data, dict) and isinstance(data.get("canvas"), Canvas):
            data.setdefault("canvas_id", data["canvas"].id)
        return data

    @model_validator(mode="after")
    def check_canvas_id(self) -> "ProcessingSession":
        """画布ID与画布快照必须一致."""
        if self.canvas is not None and self.canvas.id != self.canvas_id:
            raise ValueError(f"画布ID不一致: {self.canvas_id} != {self.canvas.id}")
        return self

    def can_transition_to(self, state: ProcessingState) -> bool:
        """是否允许迁移到指定状态."""
        return state in ALLOWED_TRANSITIONS[self.state]

    def transition_to(self, state: ProcessingState, step: Optional[str] = None) -> None:
        """迁移到新状态.

        Args:
            state: 目标状态
            step: 步骤描述，默认使用状态对应的描述

        Raises:
            ProcessingStateError: 非法迁移
        """
        if not self.can_transition_to(state):
            raise ProcessingStateError(self.state.value, state.value)

        self.state = state
        self.current_step = step or STEP_LABELS[state]
        self.updated_at = utc_now()

        if state in TERMINAL_STATES:
            self.completed_at = self.updated_at
            self.estimated_time_remaining = 0.0

    def update_progress(
        self,
        progress: float,
        frames_done: Optional[int] = None,
        estimated_time_remaining: Optional[float] = None,
    ) -> None:
        """更新进度，进度值只增不减.

        Args:
            progress: 进度百分比
            frames_done: 已编码帧数
            estimated_time_remaining: 预计剩余时间（秒）
        """
        self.progress = max(self.progress, max(0.0, min(100.0, progress)))
        if frames_done is not None:
            self.frames_done = max(self.frames_done, frames_done)
        if estimated_time_remaining is not None:
            self.estimated_time_remaining = max(0.0, estimated_time_remaining)
        self.updated_at = utc_now()

    def mark_complete(self, output_path: str) -> None:
        """标记为完成."""
        self.output_path = output_path
        self.transition_to(ProcessingState.COMPLETE)
        self.progress = 100.0

    def mark_failed(self, error_message: str, error_kind: ErrorKind = ErrorKind.UNKNOWN) -> None:
        """标记为失败."""
        self.error_message = error_message
        self.error_kind = error_kind
        self.transition_to(ProcessingState.FAILED)

    def mark_cancelled(self) -> None:
        """标记为已取消."""
        self.error_kind = ErrorKind.CANCELLED
        self.transition_to(ProcessingState.CANCELLED)

    @property
    def is_finished(self) -> bool:
        """是否已结束 (完成、失败或取消)."""
        return self.state in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        """是否进行中."""
        return not self.is_finished

    def to_progress(self) -> ProcessingProgress:
        """生成进度快照."""
        return ProcessingProgress(
            session_id=self.id,
            state=self.state,
            progress=self.progress,
            current_step=self.current_step,
            estimated_time_remaining=self.estimated_time_remaining,
            is_complete=self.is_finished,
            frames_done=self.frames_done,
            total_frames=self.total_frames,
        )
