"""外部协作者接口.

导出核心通过这些接口与设备环境交互：存储权限、输出目录与相册。
默认提供基于本地文件系统的实现。
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from poster_studio.utils.file_utils import (
    copy_file,
    ensure_directory,
    generate_output_filename,
)
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# ===================
# 权限
# ===================


class PermissionProvider(ABC):
    """存储权限提供者."""

    @abstractmethod
    def request_storage_permission(self) -> bool:
        """请求存储权限.

        Returns:
            是否已授权
        """


class FileSystemPermissionProvider(PermissionProvider):
    """本地文件系统权限：输出目录可创建且可写即视为已授权."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def request_storage_permission(self) -> bool:
        try:
            ensure_directory(self.output_dir)
        except OSError as e:
            logger.warning(f"无法创建输出目录: {self.output_dir}, {e}")
            return False
        granted = os.access(self.output_dir, os.W_OK)
        if not granted:
            logger.warning(f"输出目录不可写: {self.output_dir}")
        return granted


class StaticPermissionProvider(PermissionProvider):
    """固定结果的权限提供者."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted

    def request_storage_permission(self) -> bool:
        return self.granted


# ===================
# 相册
# ===================


class GalleryProvider(ABC):
    """输出目录与相册提供者."""

    @abstractmethod
    def ensure_output_directory(self) -> Path:
        """确保输出目录存在（幂等）.

        Returns:
            输出目录
        """

    @abstractmethod
    def generate_output_filename(self, kind: str, extension: str) -> str:
        """生成输出文件名（时间戳 + 随机后缀）."""

    @abstractmethod
    def save_to_gallery(self, path: Path, album_name: str) -> bool:
        """将文件保存到相册.

        Args:
            path: 文件路径
            album_name: 相册名称

        Returns:
            是否保存成功
        """


class LocalGalleryProvider(GalleryProvider):
    """本地目录模拟的相册.

    相册为 ``gallery_dir/<album_name>`` 目录，保存即复制文件。
    """

    def __init__(self, output_dir: Path, gallery_dir: Optional[Path] = None) -> None:
        """初始化相册提供者.

        Args:
            output_dir: 输出目录
            gallery_dir: 相册根目录，为空时不复制到相册
        """
        self.output_dir = Path(output_dir)
        self.gallery_dir = Path(gallery_dir) if gallery_dir else None

    def ensure_output_directory(self) -> Path:
        return ensure_directory(self.output_dir)

    def generate_output_filename(self, kind: str, extension: str) -> str:
        return generate_output_filename(kind, extension)

    def save_to_gallery(self, path: Path, album_name: str) -> bool:
        if self.gallery_dir is None:
            return True
        try:
            target = copy_file(path, self.gallery_dir / album_name / Path(path).name)
        except OSError as e:
            logger.error(f"保存到相册失败: {path}, {e}")
            return False
        logger.info(f"已保存到相册 {album_name}: {target}")
        return True
