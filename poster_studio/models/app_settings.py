"""应用设置模型."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from poster_studio.models.canvas import ViewportConfig
from poster_studio.utils.constants import (
    ASSET_DOWNLOAD_TIMEOUT,
    DATABASE_PATH,
    DEFAULT_ALBUM_NAME,
    DEFAULT_ENCODE_WORKERS,
    DEFAULT_ETA_WINDOW_FRAMES,
    DEFAULT_GALLERY_DIR,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_VIEWPORT_HEIGHT,
    DEFAULT_VIEWPORT_WIDTH,
    DEFAULT_WATERMARK_TEXT,
)


class Settings(BaseSettings):
    """应用设置.

    支持从环境变量（前缀 ``POSTER_STUDIO_``）和 .env 文件加载配置。

    Attributes:
        log_level: 日志级别
        output_dir: 导出目录
        gallery_dir: 相册根目录
        album_name: 相册名称
        watermark_text: 水印文字
        viewport_width: 设备视口宽度
        viewport_height: 设备视口高度
        ffmpeg_path: ffmpeg 可执行文件
        ffprobe_path: ffprobe 可执行文件
        encode_workers: 编码线程数
        eta_window_frames: 预计剩余时间的滑动窗口帧数
        asset_timeout: 远程资源下载超时（秒）
        database_path: 数据库文件路径
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTER_STUDIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    log_level: str = Field(
        default="INFO",
        description="日志级别",
    )

    # 输出配置
    output_dir: Path = Field(
        default=DEFAULT_OUTPUT_DIR,
        description="导出目录",
    )

    gallery_dir: Path = Field(
        default=DEFAULT_GALLERY_DIR,
        description="相册根目录",
    )

    album_name: str = Field(
        default=DEFAULT_ALBUM_NAME,
        min_length=1,
        description="相册名称",
    )

    # 水印配置
    watermark_text: str = Field(
        default=DEFAULT_WATERMARK_TEXT,
        description="水印文字",
    )

    viewport_width: int = Field(
        default=DEFAULT_VIEWPORT_WIDTH,
        ge=1,
        description="设备视口宽度",
    )

    viewport_height: int = Field(
        default=DEFAULT_VIEWPORT_HEIGHT,
        ge=1,
        description="设备视口高度",
    )

    # 视频处理配置
    ffmpeg_path: str = Field(
        default="ffmpeg",
        description="ffmpeg 可执行文件",
    )

    ffprobe_path: str = Field(
        default="ffprobe",
        description="ffprobe 可执行文件",
    )

    encode_workers: int = Field(
        default=DEFAULT_ENCODE_WORKERS,
        ge=1,
        le=16,
        description="编码线程数",
    )

    eta_window_frames: int = Field(
        default=DEFAULT_ETA_WINDOW_FRAMES,
        ge=1,
        le=1000,
        description="预计剩余时间滑动窗口",
    )

    asset_timeout: float = Field(
        default=ASSET_DOWNLOAD_TIMEOUT,
        gt=0,
        description="远程资源下载超时",
    )

    # 数据库配置
    database_path: Optional[Path] = Field(
        default=None,
        description="数据库文件路径",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"无效的日志级别: {v}，有效值: {valid_levels}")
        return upper_v

    @property
    def db_path(self) -> Path:
        """获取数据库路径."""
        return self.database_path or DATABASE_PATH

    @property
    def viewport(self) -> ViewportConfig:
        """获取设备视口."""
        return ViewportConfig(width=self.viewport_width, height=self.viewport_height)
