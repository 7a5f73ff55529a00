"""视频水印.

在输出帧右下角绘制半透明的 “Made with EventMarketers” 标签。尺寸按设备视口
计算（与编辑器中的显示一致），再按输出帧宽度与视口宽度之比放大。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageDraw

from poster_studio.models.canvas import ViewportConfig
from poster_studio.services.compositor import find_font
from poster_studio.utils.constants import DEFAULT_WATERMARK_TEXT
from poster_studio.utils.helpers import clamp
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# 颜色
WATERMARK_BACKGROUND = (0, 0, 0, 77)       # rgba(0, 0, 0, 0.3)
WATERMARK_BORDER = (255, 255, 255, 51)     # rgba(255, 255, 255, 0.2)
WATERMARK_TEXT_COLOR = (255, 255, 255, 204)  # rgba(255, 255, 255, 0.8)
WATERMARK_SHADOW = (0, 0, 0, 128)          # rgba(0, 0, 0, 0.5)


@dataclass(frozen=True)
class WatermarkMetrics:
    """水印尺寸（视口逻辑像素）."""

    font_size: float
    padding_horizontal: float
    padding_vertical: float
    border_radius: float
    border_width: float
    bottom: float
    right: float

    @classmethod
    def for_viewport(cls, viewport: ViewportConfig) -> "WatermarkMetrics":
        """按视口尺寸计算水印尺寸."""
        base = min(viewport.width, viewport.height)
        return cls(
            font_size=clamp(base * 0.03, 10, 16),
            padding_horizontal=clamp(base * 0.02, 8, 16),
            padding_vertical=clamp(base * 0.015, 4, 8),
            border_radius=clamp(base * 0.015, 6, 12),
            border_width=clamp(base * 0.002, 0.5, 1.5),
            bottom=clamp(viewport.height * 0.02, 10, 30),
            right=clamp(viewport.width * 0.02, 10, 25),
        )


class WatermarkRenderer:
    """水印渲染器.

    Example:
        >>> renderer = WatermarkRenderer()
        >>> layer = renderer.render((1920, 1080))
        >>> layer.mode
        'RGBA'
    """

    def __init__(
        self,
        text: str = DEFAULT_WATERMARK_TEXT,
        viewport: Optional[ViewportConfig] = None,
    ) -> None:
        """初始化水印渲染器.

        Args:
            text: 水印文字
            viewport: 设备视口
        """
        self.text = text
        self.viewport = viewport or ViewportConfig()
        self.metrics = WatermarkMetrics.for_viewport(self.viewport)
        self._cache: dict[tuple[int, int], Image.Image] = {}
        self._lock = threading.Lock()

    def render(self, frame_size: tuple[int, int]) -> Image.Image:
        """生成与帧同尺寸的透明水印层.

        Args:
            frame_size: 输出帧尺寸 (宽, 高)

        Returns:
            RGBA 水印层（除标签外完全透明）
        """
        with self._lock:
            cached = self._cache.get(frame_size)
            if cached is None:
                cached = self._draw(frame_size)
                self._cache[frame_size] = cached
        return cached.copy()

    def _draw(self, frame_size: tuple[int, int]) -> Image.Image:
        frame_w, frame_h = frame_size
        scale = frame_w / self.viewport.width
        m = self.metrics

        font_size = max(1, round(m.font_size * scale))
        font = find_font(None, font_size, bold=True, text_content=self.text)

        layer = Image.new("RGBA", frame_size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)

        left, top, right, bottom = draw.textbbox((0, 0), self.text, font=font)
        text_w, text_h = right - left, bottom - top

        pad_x = round(m.padding_horizontal * scale)
        pad_y = round(m.padding_vertical * scale)
        box_w = text_w + pad_x * 2
        box_h = text_h + pad_y * 2

        x1 = frame_w - round(m.right * scale) - box_w
        y1 = frame_h - round(m.bottom * scale) - box_h
        x2, y2 = x1 + box_w, y1 + box_h

        draw.rounded_rectangle(
            (x1, y1, x2, y2),
            radius=round(m.border_radius * scale),
            fill=WATERMARK_BACKGROUND,
            outline=WATERMARK_BORDER,
            width=max(1, round(m.border_width * scale)),
        )

        # 文字阴影（偏移 1 个逻辑像素）
        shadow = max(1, round(scale))
        text_x = x1 + pad_x - left
        text_y = y1 + pad_y - top
        draw.text((text_x + shadow, text_y + shadow), self.text, font=font, fill=WATERMARK_SHADOW)
        draw.text((text_x, text_y), self.text, font=font, fill=WATERMARK_TEXT_COLOR)

        logger.debug(f"水印已生成: {frame_size}, 标签 {box_w}x{box_h} @ ({x1}, {y1})")
        return layer
