"""服务层模块."""

from poster_studio.services.compositor import (
    AssetLoader,
    CompositeResult,
    CompositeWarning,
    Compositor,
    composite_canvas,
)
from poster_studio.services.database_service import DatabaseService
from poster_studio.services.output_sink import ArtifactKind, OutputSink
from poster_studio.services.providers import (
    FileSystemPermissionProvider,
    GalleryProvider,
    LocalGalleryProvider,
    PermissionProvider,
    StaticPermissionProvider,
)
from poster_studio.services.still_exporter import ExportedImage, StillExporter
from poster_studio.services.video_codec import (
    EncoderProfile,
    FFmpegCodecBackend,
    FrameDecoder,
    FrameEncoder,
    VideoCodecBackend,
    VideoInfo,
    build_encoder_profile,
)

__all__ = [
    # 合成
    "AssetLoader",
    "CompositeResult",
    "CompositeWarning",
    "Compositor",
    "composite_canvas",
    # 静态导出
    "ExportedImage",
    "StillExporter",
    # 视频编解码
    "EncoderProfile",
    "FFmpegCodecBackend",
    "FrameDecoder",
    "FrameEncoder",
    "VideoCodecBackend",
    "VideoInfo",
    "build_encoder_profile",
    # 输出
    "ArtifactKind",
    "OutputSink",
    "DatabaseService",
    # 外部协作者
    "FileSystemPermissionProvider",
    "GalleryProvider",
    "LocalGalleryProvider",
    "PermissionProvider",
    "StaticPermissionProvider",
]
