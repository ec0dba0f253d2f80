"""Alembic 环境脚本.

通过 `flask --app wsgi db upgrade` 执行,复用应用中 Flask-SQLAlchemy 的 Engine 与模型元数据,
目前只管理审计表 `Auditoria_TamanoBD`.
"""

from __future__ import annotations

import logging
from logging.config import fileConfig
from typing import TYPE_CHECKING, Any

from alembic import context
from flask import current_app

if TYPE_CHECKING:
    from alembic.runtime.migration import MigrationContext
    from sqlalchemy.engine import Engine
    from sqlalchemy.sql.schema import MetaData

config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

target_db = current_app.extensions["migrate"].db


def get_engine() -> Engine:
    """返回应用绑定的 SQLAlchemy Engine."""
    return target_db.engine


def get_engine_url() -> str:
    """生成带密码的连接串,`%` 需转义以适配 ConfigParser."""
    return get_engine().url.render_as_string(hide_password=False).replace("%", "%%")


def get_metadata() -> MetaData:
    """返回模型元数据(已导入 `sizewatch.models`)."""
    return target_db.metadata


config.set_main_option("sqlalchemy.url", get_engine_url())


def run_migrations_offline() -> None:
    """离线模式: 只依赖连接串,输出 SQL 脚本."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=get_metadata(),
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """在线模式: 直接连接审计库执行迁移."""

    def process_revision_directives(
        _context: MigrationContext,
        _revision: tuple[str, str] | str | None,
        directives: list[Any],
    ) -> None:
        """autogenerate 没有检测到变更时不生成空迁移."""
        if getattr(config.cmd_opts, "autogenerate", False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info("未检测到表结构变更")

    conf_args = current_app.extensions["migrate"].configure_args
    conf_args.setdefault("process_revision_directives", process_revision_directives)

    with get_engine().connect() as connection:
        context.configure(connection=connection, target_metadata=get_metadata(), **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
