"""文件工具函数模块.

提供文件和目录操作的工具函数。
"""

from __future__ import annotations

import os
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


def ensure_directory(path: Path) -> Path:
    """确保目录存在.

    Args:
        path: 目录路径

    Returns:
        目录路径
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def generate_output_filename(
    prefix: str,
    extension: str,
    now: Optional[datetime] = None,
) -> str:
    """生成输出文件名.

    格式为 ``<前缀>_<时间戳>_<随机后缀><扩展名>``。

    Args:
        prefix: 文件名前缀
        extension: 扩展名（可带或不带点号）
        now: 时间戳来源，默认当前时间

    Returns:
        文件名
    """
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{stamp}_{secrets.token_hex(3)}{extension.lower()}"


def unique_output_path(
    directory: Path,
    prefix: str,
    extension: str,
    max_attempts: int = 20,
) -> Path:
    """在目录中生成不冲突的输出路径.

    Args:
        directory: 目标目录
        prefix: 文件名前缀
        extension: 扩展名
        max_attempts: 最大尝试次数

    Returns:
        不存在的文件路径

    Raises:
        FileExistsError: 多次尝试后仍然冲突
    """
    for _ in range(max_attempts):
        candidate = directory / generate_output_filename(prefix, extension)
        if not candidate.exists():
            return candidate
    raise FileExistsError(f"无法在 {directory} 中生成不冲突的文件名")


def partial_path_for(output_path: Path) -> Path:
    """获取输出文件对应的临时（未完成）文件路径."""
    return output_path.with_name(f".{output_path.stem}.partial{output_path.suffix}")


def sidecar_path_for(output_path: Path) -> Path:
    """获取输出文件对应的元数据文件路径."""
    return output_path.with_name(f"{output_path.name}.json")


def copy_file(src: Path | str, dst: Path | str) -> Path:
    """复制文件.

    Args:
        src: 源文件路径
        dst: 目标文件路径

    Returns:
        目标文件路径
    """
    src = Path(src)
    dst = Path(dst)
    ensure_directory(dst.parent)
    shutil.copy2(src, dst)
    return dst


def move_file(src: Path | str, dst: Path | str) -> Path:
    """移动文件.

    Args:
        src: 源文件路径
        dst: 目标文件路径

    Returns:
        目标文件路径
    """
    src = Path(src)
    dst = Path(dst)
    ensure_directory(dst.parent)
    shutil.move(str(src), str(dst))
    return dst


def replace_file(src: Path, dst: Path) -> Path:
    """原子地用 src 替换 dst（同一文件系统内）."""
    os.replace(src, dst)
    return dst


def safe_delete(path: Path | str) -> bool:
    """安全删除文件或目录.

    Args:
        path: 文件或目录路径

    Returns:
        是否删除成功（路径不存在也视为成功）
    """
    path = Path(path)
    try:
        if path.is_file() or path.is_symlink():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        return True
    except OSError as e:
        logger.warning(f"删除失败: {path}, {e}")
        return False
