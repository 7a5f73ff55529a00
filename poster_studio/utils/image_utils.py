"""图片工具函数模块.

提供图片解码、适配、透明度处理等工具函数。
"""

from __future__ import annotations

import base64
import io
from typing import Tuple

from PIL import Image

from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


def bytes_to_image(data: bytes) -> Image.Image:
    """字节数据转图片.

    会立即完成解码，避免延迟加载时才暴露损坏数据。

    Args:
        data: 图片字节数据

    Returns:
        PIL Image 对象
    """
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def data_uri_to_bytes(uri: str) -> bytes:
    """解析 ``data:`` URI 的 Base64 负载.

    Args:
        uri: ``data:image/png;base64,...`` 形式的 URI

    Returns:
        原始字节

    Raises:
        ValueError: 非 Base64 编码的 data URI
    """
    header, _, payload = uri.partition(",")
    if ";base64" not in header:
        raise ValueError("仅支持 Base64 编码的 data URI")
    return base64.b64decode(payload)


def image_to_png_bytes(image: Image.Image) -> bytes:
    """图片编码为 PNG 字节（无损，不写入时间等元数据）.

    Args:
        image: PIL Image 对象

    Returns:
        PNG 字节数据
    """
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=False)
    return buffer.getvalue()


def ensure_rgba(image: Image.Image) -> Image.Image:
    """确保图片为 RGBA 模式.

    Args:
        image: PIL Image 对象

    Returns:
        RGBA 模式的图片
    """
    if image.mode != "RGBA":
        return image.convert("RGBA")
    return image


def fit_cover(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """覆盖适配：保持比例填满目标区域，居中裁剪超出部分.

    Args:
        image: 原图片
        size: 目标尺寸 (宽, 高)

    Returns:
        与目标尺寸一致的图片
    """
    target_w, target_h = size
    img_w, img_h = image.size
    if (img_w, img_h) == (target_w, target_h):
        return image.copy()

    img_ratio = img_w / img_h
    target_ratio = target_w / target_h

    if img_ratio > target_ratio:
        new_h = target_h
        new_w = max(target_w, round(new_h * img_ratio))
    else:
        new_w = target_w
        new_h = max(target_h, round(new_w / img_ratio))

    resized = image.resize((new_w, new_h), Image.Resampling.LANCZOS)

    # 居中裁剪
    x = (new_w - target_w) // 2
    y = (new_h - target_h) // 2
    return resized.crop((x, y, x + target_w, y + target_h))


def fit_contain(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """包含适配：保持比例完整显示，空白区域透明.

    Args:
        image: 原图片
        size: 目标尺寸 (宽, 高)

    Returns:
        与目标尺寸一致的 RGBA 图片
    """
    target_w, target_h = size
    image = ensure_rgba(image)
    img_w, img_h = image.size

    img_ratio = img_w / img_h
    target_ratio = target_w / target_h

    if img_ratio > target_ratio:
        new_w = target_w
        new_h = max(1, round(new_w / img_ratio))
    else:
        new_h = target_h
        new_w = max(1, round(new_h * img_ratio))

    resized = image.resize((new_w, new_h), Image.Resampling.LANCZOS)

    # 居中放置
    result = Image.new("RGBA", size, (0, 0, 0, 0))
    x = (target_w - new_w) // 2
    y = (target_h - new_h) // 2
    result.paste(resized, (x, y), resized)
    return result


def apply_opacity(image: Image.Image, opacity: float) -> Image.Image:
    """按比例缩放图片的 alpha 通道.

    Args:
        image: RGBA 图片
        opacity: 不透明度 (0-1)

    Returns:
        调整透明度后的图片
    """
    if opacity >= 1.0:
        return image
    image = ensure_rgba(image).copy()
    alpha = image.getchannel("A")
    alpha = alpha.point(lambda p: int(p * opacity))
    image.putalpha(alpha)
    return image
