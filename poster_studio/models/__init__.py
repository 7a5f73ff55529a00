"""数据模型模块."""

from poster_studio.models.canvas import (
    # 枚举
    LayerType,
    TextAlign,
    BackgroundKind,
    # 常量
    TEMPLATE_COLOR,
    # 基础类型
    Point,
    Size,
    ViewportConfig,
    TextStyle,
    # 图层类
    LayerBase,
    TextLayer,
    ImageLayer,
    LogoLayer,
    Layer,
    # 画布类
    Background,
    Canvas,
    VisibilityMap,
    # 辅助函数
    parse_color,
    validate_canvas,
)
from poster_studio.models.palette import (
    TEMPLATE_PALETTES,
    CATEGORY_TEMPLATES,
    TemplatePalette,
    get_palette,
    list_template_ids,
    template_for_category,
)
from poster_studio.models.processing import (
    OutputFormat,
    ProcessingOptions,
    ProcessingProgress,
    ProcessingSession,
    ProcessingState,
    Resolution,
    VideoQuality,
    estimate_processing_seconds,
    recommended_processing_options,
)

__all__ = [
    # 枚举
    "LayerType",
    "TextAlign",
    "BackgroundKind",
    # 常量
    "TEMPLATE_COLOR",
    # 基础类型
    "Point",
    "Size",
    "ViewportConfig",
    "TextStyle",
    # 图层类
    "LayerBase",
    "TextLayer",
    "ImageLayer",
    "LogoLayer",
    "Layer",
    # 画布类
    "Background",
    "Canvas",
    "VisibilityMap",
    # 辅助函数
    "parse_color",
    "validate_canvas",
    # 模板配色
    "TEMPLATE_PALETTES",
    "CATEGORY_TEMPLATES",
    "TemplatePalette",
    "get_palette",
    "list_template_ids",
    "template_for_category",
    # 视频处理
    "OutputFormat",
    "ProcessingOptions",
    "ProcessingProgress",
    "ProcessingSession",
    "ProcessingState",
    "Resolution",
    "VideoQuality",
    "estimate_processing_seconds",
    "recommended_processing_options",
]
