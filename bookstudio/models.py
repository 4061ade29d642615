from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional

from .extensions import db

CHAPTER_STATUSES = ("draft", "revised", "final")
CHARACTER_ROLES = ("protagonist", "antagonist", "supporting", "minor")
WORLD_ELEMENT_TYPES = ("location", "item", "concept", "organization", "magic_system", "technology")
PLOT_POINT_TYPES = ("hook", "rising_action", "climax", "falling_action", "resolution", "subplot", "event")
RELATION_TYPES = ("family", "friend", "enemy", "romantic", "colleague", "rival", "mentor")

_WORD_PATTERN = re.compile(r"\b\w+[\w'-]*\b")
_TAG_PATTERN = re.compile(r"<[^>]+>")


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def count_words(content: Optional[str]) -> int:
    """Count words in chapter content, ignoring markup left by the rich-text editor."""

    if not content:
        return 0
    return len(_WORD_PATTERN.findall(_TAG_PATTERN.sub(" ", content)))


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    genre = db.Column(db.String(120), nullable=True)
    target_audience = db.Column(db.String(120), nullable=True)
    writing_style = db.Column(db.Text, nullable=True)
    language = db.Column(db.String(10), nullable=False, default="en")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    chapters = db.relationship(
        "Chapter",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.order_index",
    )
    characters = db.relationship(
        "Character",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Character.name",
    )
    plot_points = db.relationship(
        "PlotPoint",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PlotPoint.order_index",
    )
    world_elements = db.relationship(
        "WorldElement",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WorldElement.name",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Book {self.title}>"

    def to_dict(self, *, include_counts: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "genre": self.genre,
            "target_audience": self.target_audience,
            "writing_style": self.writing_style,
            "language": self.language,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_counts:
            data["counts"] = {
                "chapters": len(self.chapters),
                "characters": len(self.characters),
                "plot_points": len(self.plot_points),
                "world_elements": len(self.world_elements),
            }
        return data


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=True)
    summary = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=False, default="draft")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.order_index}: {self.title}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "notes": self.notes,
            "status": self.status,
            "order_index": self.order_index,
            "word_count": self.word_count,
            "updated_at": _isoformat(self.updated_at),
        }


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(50), nullable=False, default="supporting")
    description = db.Column(db.Text, nullable=True)
    personality = db.Column(db.Text, nullable=True)
    backstory = db.Column(db.Text, nullable=True)
    appearance = db.Column(db.Text, nullable=True)
    motivation = db.Column(db.Text, nullable=True)
    arc = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    relations = db.relationship(
        "CharacterRelation",
        foreign_keys="CharacterRelation.character_id",
        backref="character",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CharacterRelation.id",
    )
    related_by = db.relationship(
        "CharacterRelation",
        foreign_keys="CharacterRelation.related_character_id",
        backref="related_character",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CharacterRelation.id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Character {self.name} ({self.role})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "name": self.name,
            "role": self.role,
            "description": self.description,
            "personality": self.personality,
            "backstory": self.backstory,
            "appearance": self.appearance,
            "motivation": self.motivation,
            "arc": self.arc,
            "notes": self.notes,
            "image_url": self.image_url,
            "relations": [relation.to_dict() for relation in self.relations],
            "updated_at": _isoformat(self.updated_at),
        }


class CharacterRelation(db.Model):
    __tablename__ = "character_relations"

    id = db.Column(db.Integer, primary_key=True)
    character_id = db.Column(db.Integer, db.ForeignKey("characters.id"), nullable=False, index=True)
    related_character_id = db.Column(db.Integer, db.ForeignKey("characters.id"), nullable=False, index=True)
    relation_type = db.Column(db.String(50), nullable=False, default="colleague")
    description = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<CharacterRelation {self.character_id} -{self.relation_type}-> {self.related_character_id}>"

    def to_dict(self) -> Dict[str, Any]:
        related = self.related_character
        return {
            "id": self.id,
            "character_id": self.character_id,
            "related_character_id": self.related_character_id,
            "related_character_name": related.name if related else None,
            "relation_type": self.relation_type,
            "description": self.description,
        }


class WorldElement(db.Model):
    __tablename__ = "world_elements"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)
    type = db.Column(db.String(50), nullable=False, default="location")
    description = db.Column(db.Text, nullable=True)
    usage = db.Column(db.Text, nullable=True)
    history = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<WorldElement {self.name} ({self.type})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "usage": self.usage,
            "history": self.history,
            "image_url": self.image_url,
            "updated_at": _isoformat(self.updated_at),
        }


class PlotPoint(db.Model):
    __tablename__ = "plot_points"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(50), nullable=False, default="event")
    description = db.Column(db.Text, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<PlotPoint {self.order_index}: {self.title}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "title": self.title,
            "type": self.type,
            "description": self.description,
            "order_index": self.order_index,
            "updated_at": _isoformat(self.updated_at),
        }


class GlobalSettings(db.Model):
    __tablename__ = "global_settings"

    DEFAULT_ID = "default"

    id = db.Column(db.String(20), primary_key=True, default=DEFAULT_ID)
    api_endpoint = db.Column(db.String(500), nullable=False, default="https://api.openai.com/v1")
    api_key = db.Column(db.String(500), nullable=True)
    model = db.Column(db.String(120), nullable=False, default="gpt-4o-mini")
    temperature = db.Column(db.Float, nullable=False, default=0.8)
    max_tokens = db.Column(db.Integer, nullable=False, default=4096)
    system_prompt = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<GlobalSettings {self.model} @ {self.api_endpoint}>"

    @classmethod
    def get_or_create(cls) -> "GlobalSettings":
        settings = db.session.get(cls, cls.DEFAULT_ID)
        if settings is None:
            settings = cls(id=cls.DEFAULT_ID)
            db.session.add(settings)
            db.session.flush()
        return settings

    def masked_api_key(self) -> Optional[str]:
        if not self.api_key:
            return None
        return f"****{self.api_key[-4:]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_endpoint": self.api_endpoint,
            "api_key": self.masked_api_key(),
            "has_api_key": bool(self.api_key),
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt,
            "updated_at": _isoformat(self.updated_at),
        }
