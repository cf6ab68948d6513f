"""
数据库模型基类（SQLAlchemy 2.0 风格）

约束与索引使用固定命名规则，迁移脚本在 SQLite / PostgreSQL 间生成一致的名称。
"""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# payments / refunds / webhook 表共享的元数据
metadata = Base.metadata
