"""Minimal models for sqla-relselect examples.

Tables follow the naming convention the builder relies on: a table named
``x`` is referenced through ``x_id`` and the many-to-many table between
``post`` and ``tag`` is ``post_tag``.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "user"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))


class Post(Base):
    __tablename__ = "post"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    user_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("user.id"))


class Tag(Base):
    __tablename__ = "tag"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))


class PostTag(Base):
    __tablename__ = "post_tag"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    post_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("post.id"))
    tag_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("tag.id"))


class Comment(Base):
    __tablename__ = "comment"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    text: orm.Mapped[str] = orm.mapped_column(sa.Text)
    post_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("post.id"))
