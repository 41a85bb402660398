"""Basic sqla-relselect usage examples.

Demonstrates building a schema, filtering by related rows (has-one,
has-many, many-to-many), left joins, and the three ways of fetching.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from sqla_relselect import AsyncDatabase, AsyncSelect, Row, RowCollection, Schema

from .models import Base


# ── 1. Build the schema once per connection ──────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup(conn: AsyncConnection) -> Schema:
    await conn.run_sync(Base.metadata.create_all)

    # Builders created from this schema run on ``conn``
    return Schema.from_base(Base, AsyncDatabase(conn))


# ── 2. Plain filters ─────────────────────────────────────────────────


async def get_user(schema: Schema, user_id: int) -> Row | None:
    async with schema.select("user").by_id(user_id) as query:
        assert isinstance(query, AsyncSelect)
        return await query.fetch_one()


async def get_posts_titled(schema: Schema, titles: list[str]) -> RowCollection:
    # Renders `post`.`title` IN (:title, :title_2, ...)
    query = schema.select("post").by("title", titles).order_by("`post`.`id`")
    assert isinstance(query, AsyncSelect)
    return await query.fetch_all()


# ── 3. Related rows ──────────────────────────────────────────────────


async def get_posts_of(schema: Schema, user: Row) -> RowCollection:
    # post.user_id points at user: WHERE `post`.`user_id` = :user_id
    query = schema.select("post").related_with(user)
    assert isinstance(query, AsyncSelect)
    return await query.fetch_all()


async def get_author_of(schema: Schema, post: Row) -> Row | None:
    # The other direction: WHERE `user`.`id` = :id
    async with schema.select("user").related_with(post) as query:
        assert isinstance(query, AsyncSelect)
        return await query.fetch_one()


async def get_posts_tagged(schema: Schema, tag: Row) -> RowCollection:
    # No direct key: goes through post_tag
    query = schema.select("post").related_with(tag)
    assert isinstance(query, AsyncSelect)
    return await query.fetch_all()


# ── 4. Left joins ────────────────────────────────────────────────────


async def get_posts_with_author(schema: Schema) -> list[tuple[str, str | None]]:
    query = schema.select("post").left_join(schema["user"])
    assert isinstance(query, AsyncSelect)

    result = []
    for post in await query.fetch_all():
        author = post.related("user")
        result.append((post.title, author.name if author is not None else None))
    return result


# ── 5. Streaming with a deadline ─────────────────────────────────────


async def iter_comment_texts(schema: Schema, post: Row) -> list[str]:
    texts = []
    async with schema.select("comment").related_with(post) as query:
        assert isinstance(query, AsyncSelect)
        while (comment := await query.fetch_next(timeout=5)) is not None:
            texts.append(comment.text)
    return texts


# ── 6. Inspecting the SQL ────────────────────────────────────────────


def render_latest_posts(schema: Schema) -> tuple[str, dict[str, object]]:
    sql, params = schema.select("post").order_by("`post`.`id`", "DESC").limit(10, 20).render()
    return sql, params
