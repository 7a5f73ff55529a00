"""画布合成器.

将画布（背景、相框、图层）绘制为一张 RGBA 位图。合成过程无随机性、
不读取系统时间，相同输入得到逐像素一致的输出。

Features:
    - 按 z_index 稳定排序绘制图层，跳过隐藏图层
    - 每个图层先绘制到独立图块，再绕中心顺时针旋转后合成
    - 面板图层纯色填充，文字颜色按 显式 > 模板页脚 > 白色 解析
    - 图片覆盖适配，Logo 包含适配
    - 图层资源读取失败时跳过该图层并返回警告
"""

from __future__ import annotations

import binascii
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx
from PIL import Image, ImageDraw, ImageFont

from poster_studio.models.canvas import (
    TEMPLATE_COLOR,
    Canvas,
    Layer,
    LayerType,
    RGBAColor,
    TextAlign,
    TextLayer,
    TextStyle,
    VisibilityMap,
)
from poster_studio.models.palette import get_palette
from poster_studio.utils.constants import (
    ASSET_CACHE_SIZE,
    ASSET_DOWNLOAD_TIMEOUT,
    DEFAULT_PANEL_COLOR,
    DEFAULT_TEXT_COLOR,
    FRAME_OVERLAY_OPACITY,
)
from poster_studio.utils.exceptions import AssetLoadError, DecodeError
from poster_studio.utils.image_utils import (
    apply_opacity,
    bytes_to_image,
    data_uri_to_bytes,
    ensure_rgba,
    fit_contain,
    fit_cover,
)
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# ===================
# 常量定义
# ===================

# 使用模板页脚文字色的字段类型
FOOTER_TEXT_FIELDS = frozenset({
    "footerCompanyName",
    "phone",
    "email",
    "website",
    "category",
    "address",
    "services",
})

# 行高倍数
LINE_HEIGHT_RATIO = 1.2

# 字体搜索路径
FONT_SEARCH_PATHS = [
    "/System/Library/Fonts/",
    "/System/Library/Fonts/Supplemental/",
    "/Library/Fonts/",
    "~/Library/Fonts/",
    "C:/Windows/Fonts/",
    "/usr/share/fonts/",
    "/usr/share/fonts/truetype/",
    "/usr/share/fonts/truetype/dejavu/",
]

# 未指定字体时的候选（常见无衬线字体）
DEFAULT_FONT_CANDIDATES = [
    "Arial.ttf",
    "Helvetica.ttc",
    "DejaVuSans.ttf",
]
DEFAULT_BOLD_FONT_CANDIDATES = [
    "Arial Bold.ttf",
    "arialbd.ttf",
    "DejaVuSans-Bold.ttf",
]

# 中文字体回退列表（macOS/Windows/Linux 常见中文字体）
CHINESE_FONT_FALLBACKS = [
    "PingFang SC.ttc",
    "PingFang.ttc",
    "STHeiti Light.ttc",
    "Hiragino Sans GB.ttc",
    "msyh.ttc",
    "simhei.ttf",
    "wqy-microhei.ttc",
    "NotoSansCJK-Regular.ttc",
    "NotoSansSC-Regular.otf",
]

# 视频帧读取函数：(uri, 时间秒, (宽, 高)) -> RGB/RGBA 图像
FrameReader = Callable[[str, float, tuple[int, int]], Image.Image]


# ===================
# 字体管理
# ===================


def _has_chinese_characters(text: str) -> bool:
    """检查文本是否包含中文字符."""
    for char in text:
        if '\u4e00' <= char <= '\u9fff' or '\u3400' <= char <= '\u4dbf':
            return True
    return False


def _search_font(names: list[str], font_size: int) -> Optional[ImageFont.FreeTypeFont]:
    """在常用路径中按顺序查找字体文件."""
    for search_path in FONT_SEARCH_PATHS:
        expanded_path = os.path.expanduser(search_path)
        if not os.path.isdir(expanded_path):
            continue

        for name in names:
            font_path = os.path.join(expanded_path, name)
            if os.path.exists(font_path):
                try:
                    return ImageFont.truetype(font_path, font_size)
                except OSError:
                    continue

    return None


def find_font(
    font_family: Optional[str],
    font_size: int,
    bold: bool = False,
    text_content: Optional[str] = None,
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """查找字体.

    Args:
        font_family: 字体名称
        font_size: 字体大小
        bold: 是否粗体
        text_content: 要渲染的文本（用于检测是否需要中文字体）

    Returns:
        ImageFont 对象，找不到任何字体时返回 Pillow 内置字体
    """
    needs_chinese = bool(text_content) and _has_chinese_characters(text_content)

    if font_family:
        # 尝试直接加载指定字体
        try:
            return ImageFont.truetype(font_family, font_size)
        except OSError:
            pass

        variants = [f"{font_family}.ttf", f"{font_family}.otf", f"{font_family}.ttc"]
        if bold:
            variants = [f"{font_family}-Bold.ttf", f"{font_family} Bold.ttf", *variants]
        font = _search_font(variants, font_size)
        if font is not None:
            return font
        logger.debug(f"字体 '{font_family}' 未找到，使用默认字体")

    if needs_chinese:
        font = _search_font(CHINESE_FONT_FALLBACKS, font_size)
        if font is not None:
            return font

    candidates = DEFAULT_BOLD_FONT_CANDIDATES + DEFAULT_FONT_CANDIDATES if bold else DEFAULT_FONT_CANDIDATES
    font = _search_font(candidates, font_size)
    if font is not None:
        return font

    return ImageFont.load_default(size=font_size)


# ===================
# 颜色解析
# ===================


def resolve_panel_color(style: TextStyle, template_id: Optional[str]) -> RGBAColor:
    """解析面板填充色.

    显式颜色优先；``"template"`` 取模板页脚背景色；都没有时使用固定默认色。
    """
    background = style.background_color
    if background is not None and background != TEMPLATE_COLOR:
        return background

    palette = get_palette(template_id)
    if palette is not None:
        return palette.footer_background_color
    return DEFAULT_PANEL_COLOR


def resolve_text_color(layer: TextLayer, template_id: Optional[str]) -> RGBAColor:
    """解析文字颜色.

    显式样式颜色 > 页脚字段的模板文字色 > 不透明白色。
    """
    if layer.style is not None and layer.style.color is not None:
        return layer.style.color

    if layer.field_type in FOOTER_TEXT_FIELDS:
        palette = get_palette(template_id)
        if palette is not None:
            return palette.footer_text_color

    return DEFAULT_TEXT_COLOR


# ===================
# 资源加载
# ===================


class AssetLoader:
    """图层资源加载器.

    支持本地路径、``file://``、``data:`` Base64 以及 ``http(s)://`` 地址，
    已解码的图片按地址缓存，超出容量时淘汰最久未使用的条目。

    Example:
        >>> loader = AssetLoader()
        >>> logo = loader.load("file:///tmp/logo.png")
    """

    def __init__(
        self,
        timeout: float = ASSET_DOWNLOAD_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
        cache_size: int = ASSET_CACHE_SIZE,
    ) -> None:
        """初始化加载器.

        Args:
            timeout: 远程资源下载超时（秒）
            http_client: 自定义 HTTP 客户端
            cache_size: 缓存条数上限，0 表示不缓存
        """
        self._timeout = timeout
        self._http_client = http_client
        self._cache_size = max(0, cache_size)
        self._cache: OrderedDict[str, Image.Image] = OrderedDict()
        self._lock = threading.Lock()

    def load(self, uri: str) -> Image.Image:
        """加载并解码图片.

        Args:
            uri: 资源地址

        Returns:
            RGBA 图片副本

        Raises:
            AssetLoadError: 资源无法读取或解码
        """
        if not uri:
            raise AssetLoadError(uri, "资源地址为空")

        with self._lock:
            cached = self._cache.get(uri)
            if cached is not None:
                self._cache.move_to_end(uri)
        if cached is not None:
            return cached.copy()

        data = self._read_bytes(uri)
        try:
            image = ensure_rgba(bytes_to_image(data))
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise AssetLoadError(uri, f"解码失败: {e}") from e

        if self._cache_size:
            with self._lock:
                self._cache[uri] = image
                self._cache.move_to_end(uri)
                while len(self._cache) > self._cache_size:
                    self._cache.popitem(last=False)
        return image.copy()

    def _read_bytes(self, uri: str) -> bytes:
        """读取资源原始字节."""
        try:
            if uri.startswith("data:"):
                return data_uri_to_bytes(uri)

            scheme = urlparse(uri).scheme.lower()
            if scheme in ("http", "https"):
                return self._download(uri)
            if scheme == "file":
                return Path(url2pathname(unquote(urlparse(uri).path))).read_bytes()
            return Path(uri).expanduser().read_bytes()
        except (OSError, ValueError, binascii.Error, httpx.HTTPError) as e:
            raise AssetLoadError(uri, str(e)) from e

    def _download(self, uri: str) -> bytes:
        """下载远程资源."""
        logger.debug(f"下载资源: {uri}")
        if self._http_client is not None:
            response = self._http_client.get(uri, timeout=self._timeout, follow_redirects=True)
        else:
            response = httpx.get(uri, timeout=self._timeout, follow_redirects=True)
        response.raise_for_status()
        return response.content

    def clear_cache(self) -> None:
        """清空缓存."""
        with self._lock:
            self._cache.clear()


# ===================
# 合成结果
# ===================


@dataclass
class CompositeWarning:
    """合成警告（被跳过的资源）."""

    layer_id: Optional[str]
    uri: str
    reason: str


@dataclass
class CompositeResult:
    """合成结果.

    Attributes:
        image: RGBA 位图，尺寸与画布一致
        warnings: 被跳过的图层资源
    """

    image: Image.Image
    warnings: list[CompositeWarning] = field(default_factory=list)

    @property
    def skipped_layer_ids(self) -> list[str]:
        """被跳过的图层ID."""
        return [w.layer_id for w in self.warnings if w.layer_id is not None]


# ===================
# 合成器
# ===================


class Compositor:
    """画布合成器.

    Example:
        >>> compositor = Compositor()
        >>> result = compositor.composite(canvas)
        >>> result.image.size == (canvas.width, canvas.height)
        True
    """

    def __init__(
        self,
        asset_loader: Optional[AssetLoader] = None,
        frame_reader: Optional[FrameReader] = None,
    ) -> None:
        """初始化合成器.

        Args:
            asset_loader: 图层资源加载器
            frame_reader: 视频背景的帧读取函数
        """
        self.asset_loader = asset_loader or AssetLoader()
        self.frame_reader = frame_reader

    def composite(
        self,
        canvas: Canvas,
        at_time: Optional[float] = None,
        transparent_background: bool = False,
        visibility_map: Optional[VisibilityMap] = None,
    ) -> CompositeResult:
        """合成画布.

        Args:
            canvas: 画布
            at_time: 视频背景取帧时间（秒），为空时取首帧
            transparent_background: 是否使用透明底（生成视频叠加层时使用）
            visibility_map: 字段类型 -> 是否显示

        Returns:
            合成结果

        Raises:
            DecodeError: 背景无法读取
        """
        size = (canvas.width, canvas.height)
        warnings: list[CompositeWarning] = []

        if transparent_background:
            surface = Image.new("RGBA", size, (0, 0, 0, 0))
        else:
            surface = Image.new("RGBA", size, canvas.background_color)
            surface = Image.alpha_composite(surface, self._render_background(canvas, at_time))
            if canvas.frame_overlay:
                surface = self._render_frame_overlay(surface, canvas.frame_overlay, warnings)

        for layer in canvas.layers_in_draw_order():
            if not layer.is_visible_with(visibility_map):
                continue

            try:
                tile = self._render_tile(layer, canvas.template_id)
            except AssetLoadError as e:
                logger.warning(f"跳过图层 {layer.id}: {e.message}")
                warnings.append(CompositeWarning(layer.id, layer.content, e.reason or e.message))
                continue

            surface = self._place_tile(surface, tile, layer)

        return CompositeResult(image=surface, warnings=warnings)

    # ===================
    # 背景与相框
    # ===================

    def _render_background(self, canvas: Canvas, at_time: Optional[float]) -> Image.Image:
        """绘制背景（覆盖适配到画布尺寸）."""
        size = (canvas.width, canvas.height)
        uri = canvas.background.uri

        if canvas.is_video:
            if self.frame_reader is None:
                raise DecodeError(f"未配置视频帧读取器，无法读取背景: {uri}")
            frame = self.frame_reader(uri, at_time or 0.0, size)
        else:
            try:
                frame = self.asset_loader.load(uri)
            except AssetLoadError as e:
                raise DecodeError(f"背景无法读取: {uri}, {e.reason}") from e

        return fit_cover(ensure_rgba(frame), size)

    def _render_frame_overlay(
        self,
        surface: Image.Image,
        uri: str,
        warnings: list[CompositeWarning],
    ) -> Image.Image:
        """绘制相框（拉伸到画布尺寸，固定不透明度）."""
        try:
            frame = self.asset_loader.load(uri)
        except AssetLoadError as e:
            logger.warning(f"跳过相框: {e.message}")
            warnings.append(CompositeWarning(None, uri, e.reason or e.message))
            return surface

        frame = frame.resize(surface.size, Image.Resampling.LANCZOS)
        frame = apply_opacity(frame, FRAME_OVERLAY_OPACITY)
        return Image.alpha_composite(surface, frame)

    # ===================
    # 图层渲染
    # ===================

    def _render_tile(self, layer: Layer, template_id: Optional[str]) -> Image.Image:
        """将单个图层绘制为与图层尺寸一致的图块."""
        tile_size = (max(1, round(layer.size.width)), max(1, round(layer.size.height)))

        if layer.type == LayerType.TEXT:
            tile = self._render_text_tile(layer, tile_size, template_id)
        elif layer.type == LayerType.IMAGE:
            tile = fit_cover(self.asset_loader.load(layer.content), tile_size)
        else:
            tile = fit_contain(self.asset_loader.load(layer.content), tile_size)

        return apply_opacity(ensure_rgba(tile), layer.opacity)

    def _render_text_tile(
        self,
        layer: TextLayer,
        tile_size: tuple[int, int],
        template_id: Optional[str],
    ) -> Image.Image:
        """绘制文字图层或面板."""
        style = layer.style or TextStyle()

        if layer.is_panel:
            return Image.new("RGBA", tile_size, resolve_panel_color(style, template_id))

        tile = Image.new("RGBA", tile_size, (0, 0, 0, 0))
        if style.background_color is not None:
            tile.paste(resolve_panel_color(style, template_id), (0, 0, *tile_size))

        if not layer.content:
            return tile

        # 在独立图层上绘制文字再合成，保证文字 alpha 与背景正确混合
        text_image = Image.new("RGBA", tile_size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(text_image)
        font_size = max(1, round(style.font_size))
        font = find_font(style.font_family, font_size, style.is_bold, text_content=layer.content)
        color = resolve_text_color(layer, template_id)

        line_height = round(font_size * LINE_HEIGHT_RATIO)
        y = 0
        for line in layer.content.split("\n"):
            if line:
                left, _, right, _ = draw.textbbox((0, 0), line, font=font)
                line_width = right - left
                if style.text_align == TextAlign.CENTER:
                    x = (tile_size[0] - line_width) // 2 - left
                elif style.text_align == TextAlign.RIGHT:
                    x = tile_size[0] - line_width - left
                else:
                    x = -left
                draw.text((x, y), line, font=font, fill=color)
            y += line_height

        return Image.alpha_composite(tile, text_image)

    def _place_tile(self, surface: Image.Image, tile: Image.Image, layer: Layer) -> Image.Image:
        """旋转图块并按图层中心合成到画布上."""
        if layer.rotation % 360:
            # PIL 逆时针为正，图层角度顺时针为正
            tile = tile.rotate(-layer.rotation, resample=Image.Resampling.BICUBIC, expand=True)

        center_x, center_y = layer.center
        paste_x = round(center_x - tile.width / 2)
        paste_y = round(center_y - tile.height / 2)

        temp = Image.new("RGBA", surface.size, (0, 0, 0, 0))
        temp.paste(tile, (paste_x, paste_y))
        return Image.alpha_composite(surface, temp)


def composite_canvas(
    canvas: Canvas,
    transparent_background: bool = False,
    visibility_map: Optional[VisibilityMap] = None,
) -> CompositeResult:
    """合成画布（便捷函数）.

    Args:
        canvas: 画布
        transparent_background: 是否使用透明底
        visibility_map: 字段类型 -> 是否显示

    Returns:
        合成结果
    """
    return Compositor().composite(
        canvas,
        transparent_background=transparent_background,
        visibility_map=visibility_map,
    )
