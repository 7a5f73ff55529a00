"""核心业务逻辑模块."""

from poster_studio.core.config_manager import ConfigManager, get_config
from poster_studio.core.watermark import WatermarkMetrics, WatermarkRenderer
from poster_studio.core.video_pipeline import (
    CancellationToken,
    ProcessingHandle,
    ProgressCallback,
    VideoOverlayPipeline,
)
from poster_studio.core.export_service import (
    ExportService,
    get_export_service,
    reset_export_service,
)

__all__ = [
    # 配置
    "ConfigManager",
    "get_config",
    # 水印
    "WatermarkMetrics",
    "WatermarkRenderer",
    # 视频叠加流水线
    "CancellationToken",
    "ProcessingHandle",
    "ProgressCallback",
    "VideoOverlayPipeline",
    # 导出服务
    "ExportService",
    "get_export_service",
    "reset_export_service",
]
