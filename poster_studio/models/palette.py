"""模板调色板.

集中维护模板 ID 到页脚配色的映射。页脚面板与页脚文字在未显式指定颜色时，
由合成器在颜色解析阶段查询此表。

Features:
    - 28 套内置模板的页脚背景色与文字色
    - 业务类别到模板的映射
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from poster_studio.utils.constants import DEFAULT_TEMPLATE_ID

RGBAColor = tuple[int, int, int, int]


class TemplatePalette(NamedTuple):
    """模板调色板.

    Attributes:
        footer_background_color: 页脚面板填充色
        footer_text_color: 页脚文字颜色
    """

    footer_background_color: RGBAColor
    footer_text_color: RGBAColor


# ===================
# 颜色常量
# ===================
_WHITE: RGBAColor = (255, 255, 255, 255)
_BLACK: RGBAColor = (0, 0, 0, 255)
_SLATE: RGBAColor = (31, 41, 55, 255)     # #1f2937
_NEON: RGBAColor = (0, 255, 0, 255)       # #00ff00


# 页脚配色表（面板颜色一律不透明，保证导出像素与调色板一致）
TEMPLATE_PALETTES: dict[str, TemplatePalette] = {
    "business": TemplatePalette((102, 126, 234, 255), _WHITE),
    "event": TemplatePalette((239, 68, 68, 255), _WHITE),
    "restaurant": TemplatePalette((34, 197, 94, 255), _WHITE),
    "fashion": TemplatePalette((236, 72, 153, 255), _WHITE),
    "real-estate": TemplatePalette((245, 158, 11, 255), _WHITE),
    "education": TemplatePalette((59, 130, 246, 255), _WHITE),
    "healthcare": TemplatePalette((6, 182, 212, 255), _WHITE),
    "fitness": TemplatePalette((168, 85, 247, 255), _WHITE),
    "wedding": TemplatePalette((212, 175, 55, 255), _BLACK),
    "birthday": TemplatePalette((251, 146, 60, 255), _WHITE),
    "corporate": TemplatePalette((30, 41, 59, 255), _WHITE),
    "creative": TemplatePalette((147, 51, 234, 255), _WHITE),
    "minimal": TemplatePalette((255, 255, 255, 255), _SLATE),
    "luxury": TemplatePalette((212, 175, 55, 255), _BLACK),
    "modern": TemplatePalette((102, 126, 234, 255), _WHITE),
    "vintage": TemplatePalette((120, 113, 108, 255), _WHITE),
    "retro": TemplatePalette((251, 146, 60, 255), _WHITE),
    "elegant": TemplatePalette((139, 69, 19, 255), _WHITE),
    "bold": TemplatePalette((0, 0, 0, 255), _WHITE),
    "tech": TemplatePalette((30, 41, 59, 255), _NEON),
    "nature": TemplatePalette((34, 197, 94, 255), _WHITE),
    "ocean": TemplatePalette((6, 182, 212, 255), _WHITE),
    "sunset": TemplatePalette((239, 68, 68, 255), _WHITE),
    "cosmic": TemplatePalette((30, 41, 59, 255), _WHITE),
    "artistic": TemplatePalette((168, 85, 247, 255), _WHITE),
    "sport": TemplatePalette((239, 68, 68, 255), _WHITE),
    "warm": TemplatePalette((245, 158, 11, 255), _WHITE),
    "cool": TemplatePalette((59, 130, 246, 255), _WHITE),
}


# 业务类别 -> 模板
CATEGORY_TEMPLATES: dict[str, str] = {
    "Restaurant": "restaurant",
    "Food & Beverage": "restaurant",
    "Cafe": "restaurant",
    "Bar": "restaurant",
    "Hotel": "business",
    "Event Planning": "event",
    "Wedding": "wedding",
    "Fashion": "fashion",
    "Real Estate": "real-estate",
    "Education": "education",
    "Healthcare": "healthcare",
    "Fitness": "fitness",
    "Technology": "tech",
    "Creative": "creative",
    "Corporate": "corporate",
    "Luxury": "luxury",
    "Modern": "modern",
    "Vintage": "vintage",
    "Retro": "retro",
    "Elegant": "elegant",
    "Bold": "bold",
    "Nature": "nature",
    "Ocean": "ocean",
    "Sunset": "sunset",
    "Cosmic": "cosmic",
    "Artistic": "artistic",
    "Sport": "sport",
    "Warm": "warm",
    "Cool": "cool",
}


def get_palette(template_id: Optional[str]) -> Optional[TemplatePalette]:
    """获取模板调色板.

    Args:
        template_id: 模板 ID

    Returns:
        调色板，未知模板返回 None
    """
    if not template_id:
        return None
    return TEMPLATE_PALETTES.get(template_id)


def template_for_category(category: Optional[str]) -> str:
    """根据业务类别选择模板.

    Args:
        category: 业务类别名称

    Returns:
        模板 ID，未知类别返回默认模板
    """
    if not category:
        return DEFAULT_TEMPLATE_ID
    return CATEGORY_TEMPLATES.get(category, DEFAULT_TEMPLATE_ID)


def list_template_ids() -> list[str]:
    """获取全部内置模板 ID."""
    return list(TEMPLATE_PALETTES)
