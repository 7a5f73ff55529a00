"""静态海报导出.

将画布合成为不透明位图并以 PNG 无损写入文件。导出本身不涉及相册与存储策略，
保存到相册由输出服务负责。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from poster_studio.models.canvas import Canvas, VisibilityMap, validate_canvas
from poster_studio.services.compositor import CompositeWarning, Compositor
from poster_studio.utils.constants import TEMP_DIR
from poster_studio.utils.exceptions import EncodeFailureError, InvalidCanvasError
from poster_studio.utils.file_utils import ensure_directory, safe_delete, unique_output_path
from poster_studio.utils.image_utils import image_to_png_bytes
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class ExportedImage:
    """导出的图片文件.

    Attributes:
        path: 文件路径
        width: 宽度
        height: 高度
        warnings: 合成时被跳过的资源
    """

    path: Path
    width: int
    height: int
    warnings: list[CompositeWarning] = field(default_factory=list)


class StillExporter:
    """静态海报导出器.

    Example:
        >>> exporter = StillExporter()
        >>> exported = exporter.export_still(canvas, {"logo": False})
        >>> exported.path.suffix
        '.png'
    """

    def __init__(
        self,
        compositor: Optional[Compositor] = None,
        output_dir: Optional[Path] = None,
    ) -> None:
        """初始化导出器.

        Args:
            compositor: 合成器
            output_dir: 未指定输出路径时使用的目录
        """
        self.compositor = compositor or Compositor()
        self.output_dir = Path(output_dir) if output_dir else TEMP_DIR

    def export_still(
        self,
        canvas: Canvas,
        visibility_map: Optional[VisibilityMap] = None,
        output_path: Optional[Path | str] = None,
    ) -> ExportedImage:
        """导出海报.

        Args:
            canvas: 画布
            visibility_map: 字段类型 -> 是否显示
            output_path: 输出路径，为空时自动生成

        Returns:
            导出的图片文件

        Raises:
            InvalidCanvasError: 画布无效
            DecodeError: 背景无法读取
            EncodeFailureError: 编码或写入失败
        """
        errors = validate_canvas(canvas)
        if errors:
            raise InvalidCanvasError(errors)

        result = self.compositor.composite(
            canvas,
            transparent_background=False,
            visibility_map=visibility_map,
        )

        if output_path is None:
            path = unique_output_path(ensure_directory(self.output_dir), "poster", ".png")
        else:
            path = Path(output_path)

        try:
            data = image_to_png_bytes(result.image)
            ensure_directory(path.parent)
            path.write_bytes(data)
        except (OSError, ValueError) as e:
            if path.is_file():
                safe_delete(path)
            logger.error(f"海报写入失败: {path}, {e}")
            raise EncodeFailureError(str(path), str(e)) from e

        logger.info(
            f"海报导出完成: {path} ({canvas.width}x{canvas.height}, "
            f"跳过 {len(result.warnings)} 个资源)"
        )
        return ExportedImage(
            path=path,
            width=canvas.width,
            height=canvas.height,
            warnings=result.warnings,
        )
