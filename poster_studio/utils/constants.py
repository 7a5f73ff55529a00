"""应用常量定义."""

import os
from pathlib import Path

# ===================
# 应用信息
# ===================
APP_NAME = "EventMarketers 海报与视频导出核心"
APP_VERSION = "1.0.0"

# ===================
# 路径常量
# ===================
# 应用数据目录（可通过环境变量 POSTER_STUDIO_HOME 覆盖）
APP_DATA_DIR = Path(
    os.environ.get("POSTER_STUDIO_HOME", str(Path.home() / ".poster-studio"))
).expanduser()

# 数据库文件路径
DATABASE_PATH = APP_DATA_DIR / "exports.db"

# 日志目录
LOG_DIR = APP_DATA_DIR / "logs"

# 临时文件目录
TEMP_DIR = APP_DATA_DIR / "temp"

# 默认导出目录
DEFAULT_OUTPUT_DIR = APP_DATA_DIR / "exports"

# 默认相册根目录
DEFAULT_GALLERY_DIR = APP_DATA_DIR / "gallery"

# ===================
# 画布与合成
# ===================
# 相框叠加层的固定不透明度
FRAME_OVERLAY_OPACITY = 0.9

# 文字默认值
DEFAULT_FONT_SIZE = 16
DEFAULT_TEXT_COLOR = (255, 255, 255, 255)  # 不透明白色

# 面板图层默认填充色 rgba(0, 0, 0, 0.6)
DEFAULT_PANEL_COLOR = (0, 0, 0, 153)

# 画布默认底色
DEFAULT_CANVAS_BACKGROUND = (0, 0, 0, 255)

# 默认模板
DEFAULT_TEMPLATE_ID = "business"

# ===================
# 视频处理
# ===================
# 预计剩余时间的滑动窗口帧数
DEFAULT_ETA_WINDOW_FRAMES = 30

# 编码工作线程数
DEFAULT_ENCODE_WORKERS = 2

# 外部资源下载超时（秒）
ASSET_DOWNLOAD_TIMEOUT = 15

# 已解码图层资源的缓存条数
ASSET_CACHE_SIZE = 32

# ffprobe 调用超时（秒）
FFPROBE_TIMEOUT = 30

# ===================
# 输出与相册
# ===================
DEFAULT_ALBUM_NAME = "EventMarketers"
DEFAULT_WATERMARK_TEXT = "Made with EventMarketers"

# 默认设备视口（逻辑像素）
DEFAULT_VIEWPORT_WIDTH = 390
DEFAULT_VIEWPORT_HEIGHT = 844
