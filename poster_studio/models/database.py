"""数据库 ORM 模型."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportRecord(Base):
    """导出记录表.

    每个成功保存到相册的海报或视频对应一条记录。
    """

    __tablename__ = "export_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(10), nullable=False)  # image / video
    uri = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    title = Column(String(200))
    template_id = Column(String(50))
    canvas_id = Column(String(64))
    width = Column(Integer)
    height = Column(Integer)
    file_size = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ExportRecord(id={self.id}, kind={self.kind}, uri={self.uri})>"

    def to_dict(self) -> dict:
        """转换为字典."""
        return {
            "id": self.id,
            "kind": self.kind,
            "uri": self.uri,
            "file_path": self.file_path,
            "title": self.title,
            "template_id": self.template_id,
            "canvas_id": self.canvas_id,
            "width": self.width,
            "height": self.height,
            "file_size": self.file_size,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
