"""数据库服务模块."""

from pathlib import Path
from typing import Any, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from poster_studio.utils.constants import DATABASE_PATH
from poster_studio.utils.exceptions import DatabaseError
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# 延迟导入，避免循环依赖
def _get_models():
    """获取 SQLAlchemy Base 与导出记录模型."""
    from poster_studio.models.database import Base, ExportRecord
    return Base, ExportRecord


class DatabaseService:
    """数据库服务.

    管理 SQLite 数据库连接和会话，并提供导出记录的读写。

    Attributes:
        db_path: 数据库文件路径
        engine: SQLAlchemy 引擎
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """初始化数据库服务.

        Args:
            db_path: 数据库文件路径，默认使用配置路径
        """
        self.db_path = Path(db_path) if db_path else DATABASE_PATH
        self._ensure_directory()

        # 创建引擎
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # 创建会话工厂
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

        logger.debug(f"数据库服务初始化完成: {self.db_path}")

    def _ensure_directory(self) -> None:
        """确保数据库目录存在."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def init_db(self) -> None:
        """初始化数据库表.

        创建所有定义的表结构。
        """
        Base, _ = _get_models()
        Base.metadata.create_all(self.engine)
        logger.info("数据库表初始化完成")

    def get_session(self) -> Session:
        """获取数据库会话.

        Returns:
            SQLAlchemy Session 实例
        """
        return self.SessionLocal()

    # ===================
    # 导出记录
    # ===================

    def add_export_record(self, **fields: Any):
        """新增导出记录.

        Args:
            **fields: ExportRecord 字段

        Returns:
            已保存的 ExportRecord

        Raises:
            DatabaseError: 写入失败
        """
        _, ExportRecord = _get_models()
        record = ExportRecord(**fields)
        try:
            with self.get_session() as session:
                session.add(record)
                session.commit()
                session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"保存导出记录失败: {e}")
            raise DatabaseError(f"保存导出记录失败: {e}") from e
        logger.debug(f"导出记录已保存: {record}")
        return record

    def list_export_records(self, kind: Optional[str] = None, limit: int = 100) -> list:
        """按时间倒序列出导出记录.

        Args:
            kind: 过滤类型（image / video），为空返回全部
            limit: 最大条数

        Returns:
            ExportRecord 列表（最新的在前）
        """
        _, ExportRecord = _get_models()
        stmt = select(ExportRecord)
        if kind:
            stmt = stmt.where(ExportRecord.kind == kind)
        stmt = stmt.order_by(ExportRecord.created_at.desc(), ExportRecord.id.desc()).limit(limit)
        try:
            with self.get_session() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            logger.error(f"读取导出记录失败: {e}")
            raise DatabaseError(f"读取导出记录失败: {e}") from e

    def delete_export_record(self, record_id: int) -> bool:
        """删除导出记录（不删除文件）.

        Args:
            record_id: 记录ID

        Returns:
            是否删除成功
        """
        _, ExportRecord = _get_models()
        try:
            with self.get_session() as session:
                record = session.get(ExportRecord, record_id)
                if record is None:
                    return False
                session.delete(record)
                session.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"删除导出记录失败: {e}")
            raise DatabaseError(f"删除导出记录失败: {e}") from e

    def close(self) -> None:
        """关闭数据库连接."""
        self.engine.dispose()
        logger.debug("数据库连接已关闭")

    def __enter__(self) -> "DatabaseService":
        """上下文管理器入口."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """上下文管理器出口."""
        self.close()
