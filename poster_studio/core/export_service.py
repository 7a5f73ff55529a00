"""导出服务模块.

对外的导出入口，组装合成器、静态导出、视频流水线与输出服务。

Features:
    - 静态海报导出并保存到相册
    - 视频叠加导出（带进度回调）
    - 导出历史查询
"""

from __future__ import annotations

import asyncio
from typing import Optional

from poster_studio.core.config_manager import get_config
from poster_studio.core.video_pipeline import ProgressCallback, VideoOverlayPipeline
from poster_studio.core.watermark import WatermarkRenderer
from poster_studio.models.app_settings import Settings
from poster_studio.models.canvas import Canvas, VisibilityMap
from poster_studio.models.processing import ProcessingOptions
from poster_studio.services.compositor import AssetLoader, Compositor
from poster_studio.services.database_service import DatabaseService
from poster_studio.services.output_sink import ArtifactKind, OutputSink
from poster_studio.services.providers import (
    FileSystemPermissionProvider,
    GalleryProvider,
    LocalGalleryProvider,
    PermissionProvider,
)
from poster_studio.services.still_exporter import StillExporter
from poster_studio.services.video_codec import FFmpegCodecBackend, VideoCodecBackend
from poster_studio.utils.constants import TEMP_DIR
from poster_studio.utils.file_utils import ensure_directory, safe_delete
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


class ExportService:
    """导出服务.

    Attributes:
        settings: 应用设置
        compositor: 画布合成器
        still_exporter: 静态海报导出器
        pipeline: 视频叠加流水线
        sink: 输出服务

    Example:
        >>> service = get_export_service()
        >>> uri = service.export_poster(canvas, {"logo": False})
        >>> uri = await service.export_video(canvas, on_progress=print)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        codec: Optional[VideoCodecBackend] = None,
        permission_provider: Optional[PermissionProvider] = None,
        gallery: Optional[GalleryProvider] = None,
        database: Optional[DatabaseService] = None,
    ) -> None:
        """初始化导出服务.

        Args:
            settings: 应用设置，默认从配置管理器读取
            codec: 编解码后端，默认使用 ffmpeg
            permission_provider: 存储权限提供者
            gallery: 相册提供者
            database: 导出历史数据库
        """
        self.settings = settings or get_config().settings
        s = self.settings

        self.codec = codec or FFmpegCodecBackend(s.ffmpeg_path, s.ffprobe_path)
        self.compositor = Compositor(
            AssetLoader(timeout=s.asset_timeout),
            frame_reader=self.codec.read_frame_at,
        )
        self.still_exporter = StillExporter(self.compositor, output_dir=TEMP_DIR)
        self.pipeline = VideoOverlayPipeline(
            compositor=self.compositor,
            codec=self.codec,
            permission_provider=permission_provider or FileSystemPermissionProvider(s.output_dir),
            settings=s,
            watermark_renderer=WatermarkRenderer(s.watermark_text, s.viewport),
        )
        self.sink = OutputSink(
            gallery or LocalGalleryProvider(s.output_dir, s.gallery_dir),
            album_name=s.album_name,
            database=database or DatabaseService(s.db_path),
        )

        logger.debug("导出服务初始化完成")

    def export_poster(
        self,
        canvas: Canvas,
        visibility_map: Optional[VisibilityMap] = None,
        title: Optional[str] = None,
    ) -> str:
        """导出静态海报并保存.

        Args:
            canvas: 画布
            visibility_map: 字段类型 -> 是否显示
            title: 标题（用于导出历史）

        Returns:
            最终文件的 ``file://`` 地址

        Raises:
            InvalidCanvasError: 画布无效
            DecodeError: 背景无法读取
            EncodeFailureError: 编码或写入失败
            OutputIOError: 保存失败
        """
        exported = self.still_exporter.export_still(canvas, visibility_map)
        try:
            return self.sink.persist(
                exported.path,
                ArtifactKind.IMAGE,
                title=title or canvas.name,
                template_id=canvas.template_id,
                canvas_id=canvas.id,
                size=(exported.width, exported.height),
            )
        finally:
            if exported.path.exists():
                safe_delete(exported.path)

    async def export_video(
        self,
        canvas: Canvas,
        options: Optional[ProcessingOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        visibility_map: Optional[VisibilityMap] = None,
        title: Optional[str] = None,
    ) -> str:
        """导出视频并保存.

        Args:
            canvas: 视频背景的画布
            options: 处理选项，默认使用已保存的默认选项
            on_progress: 进度回调
            visibility_map: 字段类型 -> 是否显示
            title: 标题（用于导出历史）

        Returns:
            最终文件的 ``file://`` 地址

        Raises:
            AlreadyProcessingError: 该画布已有进行中的会话
            AppException: 处理失败、被取消或保存失败
        """
        if options is None:
            options = get_config().processing_options.model_copy()

        output_path = await self.pipeline.process_video_canvas(
            canvas,
            options,
            on_progress=on_progress,
            visibility_map=visibility_map,
        )
        return await asyncio.get_running_loop().run_in_executor(
            None,
            lambda: self.sink.persist(
                output_path,
                ArtifactKind.VIDEO,
                title=title or canvas.name,
                template_id=canvas.template_id,
                canvas_id=canvas.id,
                size=options.output_size(canvas),
            ),
        )

    def cancel_processing(self, session_id: str) -> bool:
        """取消视频处理会话."""
        return self.pipeline.cancel_processing(session_id)

    def list_exports(self, kind: Optional[ArtifactKind] = None, limit: int = 100) -> list:
        """按时间倒序列出导出历史."""
        return self.sink.list_exports(kind, limit)

    def close(self) -> None:
        """释放资源."""
        self.pipeline.shutdown(wait=False)
        if self.sink.database is not None:
            self.sink.database.close()


# 单例实例
_export_service_instance: Optional[ExportService] = None


def get_export_service() -> ExportService:
    """获取导出服务单例.

    Returns:
        ExportService 实例
    """
    global _export_service_instance

    if _export_service_instance is None:
        ensure_directory(TEMP_DIR)
        _export_service_instance = ExportService()

    return _export_service_instance


def reset_export_service() -> None:
    """重置导出服务单例."""
    global _export_service_instance
    if _export_service_instance is not None:
        _export_service_instance.close()
    _export_service_instance = None
