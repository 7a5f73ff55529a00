"""配置管理器模块."""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from poster_studio.models.app_settings import Settings
from poster_studio.models.processing import ProcessingOptions
from poster_studio.utils.constants import APP_DATA_DIR
from poster_studio.utils.exceptions import ConfigError
from poster_studio.utils.logger import set_log_level, setup_logger

logger = setup_logger(__name__)

# 配置文件路径
DEFAULT_OPTIONS_FILE = APP_DATA_DIR / "default_processing_options.json"


class ConfigManager:
    """配置管理器.

    负责应用配置的加载、保存和管理。

    Attributes:
        settings: 应用设置
        processing_options: 默认视频处理选项
    """

    _instance: Optional["ConfigManager"] = None

    def __new__(cls) -> "ConfigManager":
        """单例模式."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        """初始化配置管理器."""
        if self._initialized:
            return

        self._settings: Optional[Settings] = None
        self._processing_options: Optional[ProcessingOptions] = None
        self._initialized = True

        # 确保配置目录存在
        APP_DATA_DIR.mkdir(parents=True, exist_ok=True)

        logger.debug("配置管理器初始化完成")

    @property
    def settings(self) -> Settings:
        """获取应用设置."""
        if self._settings is None:
            self._settings = self._load_settings()
        return self._settings

    @property
    def processing_options(self) -> ProcessingOptions:
        """获取默认视频处理选项."""
        if self._processing_options is None:
            self._processing_options = self._load_processing_options()
        return self._processing_options

    def _load_settings(self) -> Settings:
        """加载应用设置.

        Returns:
            Settings 实例

        Raises:
            ConfigError: 配置无效
        """
        try:
            settings = Settings()
        except ValidationError as e:
            logger.error(f"加载应用设置失败: {e}")
            raise ConfigError(f"加载应用设置失败: {e}") from e

        set_log_level(settings.log_level)
        logger.debug(f"应用设置加载完成: log_level={settings.log_level}")
        return settings

    def _load_processing_options(self) -> ProcessingOptions:
        """加载默认处理选项.

        如果配置文件存在则从文件加载，否则返回默认选项。

        Returns:
            ProcessingOptions 实例
        """
        if DEFAULT_OPTIONS_FILE.exists():
            try:
                content = DEFAULT_OPTIONS_FILE.read_text(encoding="utf-8")
                options = ProcessingOptions.model_validate_json(content)
                logger.debug("从文件加载默认处理选项")
                return options
            except (OSError, ValidationError) as e:
                logger.warning(f"加载处理选项文件失败，使用默认选项: {e}")

        return ProcessingOptions()

    def save_processing_options(self, options: ProcessingOptions) -> None:
        """保存处理选项为默认选项.

        Args:
            options: 处理选项

        Raises:
            ConfigError: 写入失败
        """
        try:
            DEFAULT_OPTIONS_FILE.write_text(
                options.model_dump_json(by_alias=True, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"保存处理选项失败: {e}")
            raise ConfigError(f"保存处理选项失败: {e}") from e

        self._processing_options = options
        logger.info("默认处理选项已保存")

    def reload(self) -> None:
        """重新加载所有配置."""
        self._settings = None
        self._processing_options = None
        logger.info("配置已重新加载")

    def reset_to_defaults(self) -> None:
        """重置为默认配置."""
        if DEFAULT_OPTIONS_FILE.exists():
            DEFAULT_OPTIONS_FILE.unlink()

        self.reload()
        logger.info("配置已重置为默认值")


def get_config() -> ConfigManager:
    """获取配置管理器实例.

    Returns:
        ConfigManager 单例实例
    """
    return ConfigManager()
