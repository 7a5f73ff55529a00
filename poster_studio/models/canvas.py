"""画布与图层数据模型.

描述一张可导出的作品：背景（图片或视频）、可选相框，以及按层级排列的
文字、图片、Logo 图层。模型均为不可变对象，编辑操作返回新实例。

Features:
    - 几何与样式基础类型（坐标、尺寸、颜色、文字样式）
    - 文字 / 图片 / Logo 三类图层（按 type 字段区分）
    - 面板约定：内容为空且设置了背景色的文字图层
    - 画布层级排序、增删改图层
    - 与编辑器一致的 camelCase JSON 序列化/反序列化
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from PIL import ImageColor
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from poster_studio.utils.constants import (
    DEFAULT_CANVAS_BACKGROUND,
    DEFAULT_FONT_SIZE,
    DEFAULT_TEMPLATE_ID,
    DEFAULT_VIEWPORT_HEIGHT,
    DEFAULT_VIEWPORT_WIDTH,
)
from poster_studio.utils.helpers import generate_short_id


# ===================
# 类型别名
# ===================

RGBAColor = tuple[int, int, int, int]

# 字段类型 -> 是否显示
VisibilityMap = Mapping[str, bool]

# 面板背景色取模板调色板的标记值
TEMPLATE_COLOR = "template"

# 编辑器的 rgba() 写法，alpha 为 0-1 浮点数
_RGBA_PATTERN = re.compile(
    r"rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([0-9]*\.?[0-9]+)\s*)?\)"
)


# ===================
# 枚举定义
# ===================


class LayerType(str, Enum):
    """图层类型枚举."""

    TEXT = "text"  # 文字图层（含面板）
    IMAGE = "image"  # 图片图层
    LOGO = "logo"  # Logo 图层


class TextAlign(str, Enum):
    """文字对齐方式."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class BackgroundKind(str, Enum):
    """背景类型."""

    IMAGE = "image"
    VIDEO = "video"


# ===================
# 颜色解析
# ===================


def parse_color(value: Any) -> RGBAColor:
    """解析颜色值为 RGBA 元组.

    支持 RGB/RGBA 元组、十六进制、``rgb()/rgba()``（alpha 为 0-1）、
    ``transparent`` 以及 Pillow 可识别的颜色名称。

    Args:
        value: 颜色值

    Returns:
        RGBA 颜色元组

    Raises:
        ValueError: 无法解析的颜色
    """
    if isinstance(value, (tuple, list)):
        if len(value) == 3:
            value = (*value, 255)
        if len(value) != 4:
            raise ValueError(f"颜色必须包含3或4个分量，实际: {len(value)}")
        for i, v in enumerate(value):
            if not isinstance(v, int) or not 0 <= v <= 255:
                raise ValueError(f"颜色值必须在0-255之间，索引{i}的值: {v}")
        return (value[0], value[1], value[2], value[3])

    if not isinstance(value, str):
        raise ValueError(f"无法解析颜色: {value!r}")

    text = value.strip().lower()
    if text == "transparent":
        return (0, 0, 0, 0)

    match = _RGBA_PATTERN.fullmatch(text)
    if match:
        r, g, b = (int(match.group(i)) for i in (1, 2, 3))
        if max(r, g, b) > 255:
            raise ValueError(f"颜色值必须在0-255之间: {value}")
        alpha = match.group(4)
        a = 255 if alpha is None else round(min(1.0, float(alpha)) * 255)
        return (r, g, b, a)

    try:
        color = ImageColor.getcolor(text, "RGBA")
    except ValueError:
        raise ValueError(f"无法解析颜色: {value}") from None
    return (color[0], color[1], color[2], color[3])


# ===================
# 基础类型
# ===================


class CanvasModel(BaseModel):
    """画布模型基类.

    不可变，接受 camelCase 与 snake_case 两种字段名。
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Point(CanvasModel):
    """坐标点（设备无关像素，左上角为原点）."""

    x: float = 0.0
    y: float = 0.0


class Size(CanvasModel):
    """尺寸（必须为正数）."""

    width: float = Field(gt=0, description="宽度")
    height: float = Field(gt=0, description="高度")


class ViewportConfig(CanvasModel):
    """设备视口.

    仅供需要按设备尺寸计算大小的组件使用（如水印），合成器不读取。
    """

    width: int = Field(default=DEFAULT_VIEWPORT_WIDTH, gt=0)
    height: int = Field(default=DEFAULT_VIEWPORT_HEIGHT, gt=0)


class TextStyle(CanvasModel):
    """文字样式.

    Attributes:
        font_size: 字号（像素）
        color: 文字颜色，为空时在渲染阶段解析
        font_family: 字体名称
        font_weight: 字重（normal / bold / 100-900）
        text_align: 对齐方式
        background_color: 背景色，或 ``"template"`` 表示使用模板页脚色
    """

    font_size: float = Field(default=DEFAULT_FONT_SIZE, gt=0, description="字号")
    color: Optional[RGBAColor] = Field(default=None, description="文字颜色")
    font_family: Optional[str] = Field(default=None, description="字体名称")
    font_weight: str = Field(default="normal", description="字重")
    text_align: TextAlign = Field(default=TextAlign.LEFT, description="对齐方式")
    background_color: Optional[Union[Literal["template"], RGBAColor]] = Field(
        default=None,
        description="背景色",
    )

    @field_validator("color", mode="before")
    @classmethod
    def validate_color(cls, v: Any) -> Any:
        """解析文字颜色."""
        if v is None:
            return None
        return parse_color(v)

    @field_validator("background_color", mode="before")
    @classmethod
    def validate_background_color(cls, v: Any) -> Any:
        """解析背景色."""
        if v is None or v == TEMPLATE_COLOR:
            return v
        return parse_color(v)

    @field_validator("font_weight", mode="before")
    @classmethod
    def validate_font_weight(cls, v: Any) -> Any:
        """字重统一为字符串."""
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def is_bold(self) -> bool:
        """是否为粗体."""
        weight = self.font_weight.strip().lower()
        if weight in ("bold", "bolder"):
            return True
        return weight.isdigit() and int(weight) >= 600


# ===================
# 图层
# ===================


class LayerBase(CanvasModel):
    """图层基类.

    Attributes:
        id: 图层ID（画布内唯一）
        content: 文字内容，或图片/Logo 的资源地址
        position: 左上角坐标
        size: 图层尺寸
        rotation: 旋转角度（度，顺时针，绕图层中心）
        z_index: 层级（越大越靠上，相同时按插入顺序）
        style: 文字样式
        field_type: 语义标签，仅用于显示开关
        visible: 是否可见
        opacity: 不透明度（0-1）
    """

    id: str = Field(default_factory=generate_short_id, description="图层ID")
    content: str = Field(default="", description="内容")
    position: Point = Field(default_factory=Point, description="位置")
    size: Size = Field(description="尺寸")
    rotation: float = Field(default=0.0, description="旋转角度")
    z_index: int = Field(default=0, description="层级")
    style: Optional[TextStyle] = Field(default=None, description="文字样式")
    field_type: Optional[str] = Field(default=None, description="字段类型")
    visible: bool = Field(default=True, description="是否可见")
    opacity: float = Field(default=1.0, ge=0, le=1, description="不透明度")

    @property
    def center(self) -> tuple[float, float]:
        """图层中心点."""
        return (
            self.position.x + self.size.width / 2,
            self.position.y + self.size.height / 2,
        )

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """边界框 (left, top, right, bottom)，未考虑旋转."""
        return (
            self.position.x,
            self.position.y,
            self.position.x + self.size.width,
            self.position.y + self.size.height,
        )

    def is_visible_with(self, visibility_map: Optional[VisibilityMap] = None) -> bool:
        """结合显示开关判断图层是否参与合成.

        Args:
            visibility_map: 字段类型 -> 是否显示

        Returns:
            是否可见
        """
        if not self.visible:
            return False
        if visibility_map and self.field_type:
            return visibility_map.get(self.field_type, True) is not False
        return True


class TextLayer(LayerBase):
    """文字图层.

    内容为空且设置了背景色时作为面板（纯色矩形）渲染。

    Example:
        >>> layer = TextLayer.create("Acme Co.", x=20, y=20, width=300, height=60)
        >>> layer.is_panel
        False
    """

    type: Literal[LayerType.TEXT] = Field(default=LayerType.TEXT, description="图层类型")

    @property
    def is_panel(self) -> bool:
        """是否为面板图层."""
        return (
            self.content == ""
            and self.style is not None
            and self.style.background_color is not None
        )

    @classmethod
    def create(
        cls,
        content: str,
        x: float = 0,
        y: float = 0,
        width: float = 200,
        height: float = 40,
        font_size: float = DEFAULT_FONT_SIZE,
        color: Any = None,
        field_type: Optional[str] = None,
        **kwargs: Any,
    ) -> "TextLayer":
        """快速创建文字图层.

        Args:
            content: 文字内容
            x: X坐标
            y: Y坐标
            width: 宽度
            height: 高度
            font_size: 字号
            color: 文字颜色，为空时在渲染阶段解析
            field_type: 字段类型
            **kwargs: 其他图层字段

        Returns:
            TextLayer实例
        """
        return cls(
            content=content,
            position=Point(x=x, y=y),
            size=Size(width=width, height=height),
            style=TextStyle(font_size=font_size, color=color),
            field_type=field_type,
            **kwargs,
        )

    @classmethod
    def create_panel(
        cls,
        x: float,
        y: float,
        width: float,
        height: float,
        background_color: Any = TEMPLATE_COLOR,
        field_type: Optional[str] = "footerBackground",
        **kwargs: Any,
    ) -> "TextLayer":
        """创建面板图层.

        Args:
            x: X坐标
            y: Y坐标
            width: 宽度
            height: 高度
            background_color: 填充色，默认取模板页脚色
            field_type: 字段类型
            **kwargs: 其他图层字段

        Returns:
            面板图层
        """
        return cls(
            content="",
            position=Point(x=x, y=y),
            size=Size(width=width, height=height),
            style=TextStyle(background_color=background_color),
            field_type=field_type,
            **kwargs,
        )


class ImageLayer(LayerBase):
    """图片图层（覆盖适配，超出部分裁剪）."""

    type: Literal[LayerType.IMAGE] = Field(default=LayerType.IMAGE, description="图层类型")

    @classmethod
    def create(
        cls,
        uri: str,
        x: float = 0,
        y: float = 0,
        width: float = 100,
        height: float = 100,
        **kwargs: Any,
    ) -> "ImageLayer":
        """创建图片图层."""
        return cls(
            content=uri,
            position=Point(x=x, y=y),
            size=Size(width=width, height=height),
            **kwargs,
        )


class LogoLayer(LayerBase):
    """Logo 图层（包含适配，不裁剪）."""

    type: Literal[LayerType.LOGO] = Field(default=LayerType.LOGO, description="图层类型")

    @classmethod
    def create(
        cls,
        uri: str,
        x: float = 0,
        y: float = 0,
        width: float = 100,
        height: float = 100,
        **kwargs: Any,
    ) -> "LogoLayer":
        """创建 Logo 图层."""
        return cls(
            content=uri,
            position=Point(x=x, y=y),
            size=Size(width=width, height=height),
            field_type=kwargs.pop("field_type", "logo"),
            **kwargs,
        )


# 按 type 字段区分的图层联合类型
Layer = Annotated[Union[TextLayer, ImageLayer, LogoLayer], Field(discriminator="type")]


# ===================
# 画布
# ===================


class Background(CanvasModel):
    """画布背景."""

    kind: BackgroundKind = Field(default=BackgroundKind.IMAGE, description="背景类型")
    uri: str = Field(default="", description="资源地址")


class Canvas(CanvasModel):
    """画布.

    尺寸在创建后固定，重新布局需要创建新的画布。

    Attributes:
        id: 画布ID
        name: 画布名称
        width: 宽度（像素）
        height: 高度（像素）
        background: 背景
        frame_overlay: 相框图片地址（位于背景之上、图层之下）
        layers: 图层列表（插入顺序）
        template_id: 模板ID（决定页脚调色板）
        background_color: 背景底色

    Example:
        >>> canvas = Canvas(width=1080, height=1920, background=Background(uri="bg.png"))
        >>> canvas = canvas.with_layer(TextLayer.create("Acme Co.", x=20, y=20))
        >>> len(canvas.layers)
        1
    """

    id: str = Field(default_factory=generate_short_id, description="画布ID")
    name: str = Field(default="未命名画布", max_length=100, description="画布名称")
    width: int = Field(ge=0, description="宽度")
    height: int = Field(ge=0, description="高度")
    background: Background = Field(default_factory=Background, description="背景")
    frame_overlay: Optional[str] = Field(default=None, description="相框图片")
    layers: tuple[Layer, ...] = Field(default=(), description="图层列表")
    template_id: str = Field(default=DEFAULT_TEMPLATE_ID, description="模板ID")
    background_color: RGBAColor = Field(
        default=DEFAULT_CANVAS_BACKGROUND,
        description="背景底色",
    )

    @field_validator("background_color", mode="before")
    @classmethod
    def validate_background_color(cls, v: Any) -> Any:
        """解析背景底色."""
        return parse_color(v)

    @model_validator(mode="after")
    def validate_unique_layer_ids(self) -> "Canvas":
        """验证图层ID唯一."""
        seen: set[str] = set()
        for layer in self.layers:
            if layer.id in seen:
                raise ValueError(f"图层ID重复: {layer.id}")
            seen.add(layer.id)
        return self

    @property
    def size(self) -> tuple[int, int]:
        """画布尺寸 (宽, 高)."""
        return (self.width, self.height)

    @property
    def is_video(self) -> bool:
        """是否为视频背景."""
        return self.background.kind == BackgroundKind.VIDEO

    @property
    def is_portrait(self) -> bool:
        """是否为竖版画布."""
        return self.height > self.width

    def layers_in_draw_order(self) -> list[Layer]:
        """按绘制顺序返回图层（z_index 升序，稳定排序）."""
        return sorted(self.layers, key=lambda layer: layer.z_index)

    def get_layer(self, layer_id: str) -> Optional[Layer]:
        """根据ID获取图层.

        Args:
            layer_id: 图层ID

        Returns:
            图层对象，不存在返回None
        """
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def with_layer(self, layer: Layer, auto_z_index: bool = True) -> "Canvas":
        """添加图层，返回新画布.

        Args:
            layer: 图层对象
            auto_z_index: 是否自动设置 z_index 为当前最大值+1

        Returns:
            新画布

        Raises:
            ValueError: 图层ID已存在
        """
        if self.get_layer(layer.id) is not None:
            raise ValueError(f"图层ID重复: {layer.id}")
        if auto_z_index and self.layers:
            max_z = max(existing.z_index for existing in self.layers)
            layer = layer.model_copy(update={"z_index": max_z + 1})
        return self.model_copy(update={"layers": (*self.layers, layer)})

    def without_layer(self, layer_id: str) -> "Canvas":
        """删除图层，返回新画布.

        Raises:
            KeyError: 图层不存在
        """
        if self.get_layer(layer_id) is None:
            raise KeyError(f"图层不存在: {layer_id}")
        layers = tuple(layer for layer in self.layers if layer.id != layer_id)
        return self.model_copy(update={"layers": layers})

    def replace_layer(self, layer: Layer) -> "Canvas":
        """按ID替换图层，返回新画布.

        Raises:
            KeyError: 图层不存在
        """
        if self.get_layer(layer.id) is None:
            raise KeyError(f"图层不存在: {layer.id}")
        layers = tuple(layer if existing.id == layer.id else existing for existing in self.layers)
        return self.model_copy(update={"layers": layers})

    # ===================
    # 序列化
    # ===================

    def to_json(self, indent: int = 2) -> str:
        """序列化为 JSON 字符串（camelCase 字段名）."""
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "Canvas":
        """从 JSON 字符串反序列化."""
        return cls.model_validate_json(json_str)

    def save_to_file(self, path: Path | str) -> None:
        """保存到 JSON 文件.

        Args:
            path: 文件路径
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def from_file(cls, path: Path | str) -> "Canvas":
        """从 JSON 文件加载.

        Args:
            path: 文件路径

        Returns:
            Canvas 实例
        """
        return cls.from_json(Path(path).read_text(encoding="utf-8"))


# ===================
# 校验
# ===================


def validate_canvas(canvas: Canvas) -> list[str]:
    """检查画布是否可以导出.

    Args:
        canvas: 画布

    Returns:
        错误列表，为空表示可以导出
    """
    errors: list[str] = []

    if canvas.width <= 0 or canvas.height <= 0:
        errors.append(f"画布尺寸无效: {canvas.width}x{canvas.height}")

    if not canvas.background.uri:
        errors.append("缺少背景资源")

    return errors
