"""Tag management; every change refreshes the message matcher's tags."""

from __future__ import annotations

from typing import Any

from .models import Tag, UpdateTagOpts


class TagsService:
    """Runs each tag operation in its own transaction and reloads tags after changes."""

    def __init__(self, repo: Any, messages_service: Any) -> None:
        self._repo = repo
        self._messages = messages_service

    def create(self, tag: Tag) -> Tag:
        """Store a tag and return it as stored."""
        with self._repo.begin() as tx:
            created = tx.create(tag)
            tx.commit()
        self._messages.update_tags()
        return created

    def read(self) -> list[Tag]:
        """Return every tag that has not been deleted."""
        with self._repo.begin() as tx:
            tags = tx.read()
            tx.commit()
        return tags

    def update(self, params: UpdateTagOpts) -> None:
        """Apply a partial update to a tag."""
        with self._repo.begin() as tx:
            tx.update(params)
            tx.commit()
        self._messages.update_tags()

    def delete(self, tag_id: int) -> None:
        with self._repo.begin() as tx:
            tx.delete(tag_id)
            tx.commit()
        self._messages.update_tags()