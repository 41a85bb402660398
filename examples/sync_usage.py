"""Running builders on a synchronous SQLAlchemy connection.

NOTE: This file is illustrative; it won't run standalone
without seeded data.
"""

from __future__ import annotations

import sqlalchemy as sa

from sqla_relselect import Database, Schema, Select

from .models import Base


def tag_names_of_post(post_id: int) -> list[str]:
    engine = sa.create_engine("sqlite://")
    Base.metadata.create_all(engine)

    with engine.connect() as conn:
        schema = Schema.from_base(Base, Database(conn))

        post = schema.select("post").by_id(post_id).fetch_one()
        if post is None:
            return []

        query = schema.select("tag").related_with(post).order_by("`tag`.`name`")
        assert isinstance(query, Select)
        return list(query.fetch_all().get("name"))
