"""输出服务.

导出完成后的文件落地：确保输出目录、生成不冲突的文件名、移动/复制文件、
保存到相册、返回稳定的 ``file://`` 地址，并记录导出历史。
只在处理会话进入完成状态后调用。
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union

from poster_studio.services.database_service import DatabaseService
from poster_studio.services.providers import GalleryProvider
from poster_studio.utils.constants import DEFAULT_ALBUM_NAME
from poster_studio.utils.exceptions import DatabaseError, OutputIOError
from poster_studio.utils.file_utils import copy_file, move_file, sidecar_path_for
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)

# 生成不冲突文件名的最大尝试次数
MAX_NAME_ATTEMPTS = 20


class ArtifactKind(str, Enum):
    """导出产物类型."""

    IMAGE = "image"
    VIDEO = "video"


# 未能从源文件推断扩展名时使用的默认值
DEFAULT_EXTENSIONS: dict[ArtifactKind, str] = {
    ArtifactKind.IMAGE: ".png",
    ArtifactKind.VIDEO: ".mp4",
}


class OutputSink:
    """输出服务.

    Example:
        >>> sink = OutputSink(LocalGalleryProvider(output_dir))
        >>> uri = sink.persist(Path("/tmp/poster.png"), ArtifactKind.IMAGE)
        >>> uri.startswith("file://")
        True
    """

    def __init__(
        self,
        gallery: GalleryProvider,
        album_name: str = DEFAULT_ALBUM_NAME,
        database: Optional[DatabaseService] = None,
    ) -> None:
        """初始化输出服务.

        Args:
            gallery: 相册提供者
            album_name: 相册名称
            database: 导出历史数据库，为空时不记录
        """
        self.gallery = gallery
        self.album_name = album_name
        self.database = database
        if self.database is not None:
            self.database.init_db()

    def persist(
        self,
        source: Union[Path, str, bytes],
        kind: ArtifactKind,
        title: Optional[str] = None,
        template_id: Optional[str] = None,
        canvas_id: Optional[str] = None,
        size: Optional[tuple[int, int]] = None,
        extension: Optional[str] = None,
        move: bool = True,
    ) -> str:
        """保存导出产物.

        Args:
            source: 源文件路径或文件内容
            kind: 产物类型
            title: 标题（用于导出历史）
            template_id: 模板ID
            canvas_id: 画布ID
            size: 尺寸 (宽, 高)
            extension: 扩展名，默认从源文件推断
            move: 源为文件时是否移动（否则复制）

        Returns:
            最终文件的 ``file://`` 地址

        Raises:
            OutputIOError: 写入或保存到相册失败
        """
        kind = ArtifactKind(kind)
        source_path = None if isinstance(source, bytes) else Path(source)
        if source_path is not None and not source_path.is_file():
            raise OutputIOError(f"导出文件不存在: {source_path}")

        ext = extension or (source_path.suffix if source_path is not None else "") or DEFAULT_EXTENSIONS[kind]

        try:
            output_dir = self.gallery.ensure_output_directory()
            target = self._unique_target(output_dir, kind, ext)

            if source_path is None:
                target.write_bytes(source)
            elif move:
                move_file(source_path, target)
            else:
                copy_file(source_path, target)
        except OSError as e:
            logger.error(f"保存导出文件失败: {e}")
            raise OutputIOError(f"保存导出文件失败: {e}") from e

        # 元数据文件随产物一起移动
        if source_path is not None and move:
            sidecar = sidecar_path_for(source_path)
            if sidecar.exists():
                try:
                    move_file(sidecar, sidecar_path_for(target))
                except OSError as e:
                    logger.warning(f"移动元数据文件失败: {sidecar}, {e}")

        if not self.gallery.save_to_gallery(target, self.album_name):
            raise OutputIOError(f"保存到相册失败: {target}")

        uri = target.resolve().as_uri()
        self._record(kind, uri, target, title, template_id, canvas_id, size)
        logger.info(f"导出产物已保存: {uri}")
        return uri

    def _unique_target(self, output_dir: Path, kind: ArtifactKind, extension: str) -> Path:
        """生成不冲突的目标路径."""
        for _ in range(MAX_NAME_ATTEMPTS):
            candidate = output_dir / self.gallery.generate_output_filename(kind.value, extension)
            if not candidate.exists():
                return candidate
        raise OutputIOError(f"无法在 {output_dir} 中生成不冲突的文件名")

    def _record(
        self,
        kind: ArtifactKind,
        uri: str,
        target: Path,
        title: Optional[str],
        template_id: Optional[str],
        canvas_id: Optional[str],
        size: Optional[tuple[int, int]],
    ) -> None:
        """记录导出历史（失败只记录日志）."""
        if self.database is None:
            return
        width, height = size if size else (None, None)
        try:
            self.database.add_export_record(
                kind=kind.value,
                uri=uri,
                file_path=str(target),
                title=title,
                template_id=template_id,
                canvas_id=canvas_id,
                width=width,
                height=height,
                file_size=target.stat().st_size,
            )
        except DatabaseError as e:
            logger.error(f"导出历史记录失败: {e}")

    def list_exports(self, kind: Optional[ArtifactKind] = None, limit: int = 100) -> list:
        """按时间倒序列出导出历史.

        Args:
            kind: 过滤类型
            limit: 最大条数

        Returns:
            ExportRecord 列表
        """
        if self.database is None:
            return []
        return self.database.list_export_records(ArtifactKind(kind).value if kind else None, limit)
