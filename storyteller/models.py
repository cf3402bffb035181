from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager
from .services.chapter_generation import StoryPreferences


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    stories = db.relationship("Story", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "display_name": self.display_name}

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, int(user_id))


class Story(db.Model):
    __tablename__ = "stories"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    initial_prompt = db.Column(db.Text, nullable=False)
    reading_level = db.Column(db.Integer, nullable=True)
    story_length = db.Column(db.Integer, nullable=True)
    chapter_length = db.Column(db.String(50), nullable=True)
    structural_prompt = db.Column(db.Text, nullable=True)
    story_arc = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=False, default="in_progress")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    chapters = db.relationship(
        "Chapter",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.chapter_number",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Story {self.title} ({self.status})>"

    @property
    def arc_steps(self) -> List[Dict[str, str]]:
        if not self.story_arc:
            return []
        try:
            data = json.loads(self.story_arc)
        except json.JSONDecodeError:
            return []
        steps = data.get("steps") if isinstance(data, dict) else None
        return steps if isinstance(steps, list) else []

    @property
    def preferences(self) -> StoryPreferences:
        return StoryPreferences(
            reading_level=self.reading_level,
            story_length=self.story_length,
            chapter_length=self.chapter_length,
            structural_prompt=self.structural_prompt,
        )

    def to_dict(self, *, include_chapters: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "initial_prompt": self.initial_prompt,
            "reading_level": self.reading_level,
            "story_length": self.story_length,
            "chapter_length": self.chapter_length,
            "structural_prompt": self.structural_prompt,
            "story_arc": {"steps": self.arc_steps},
            "status": self.status,
            "chapter_count": len(self.chapters),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_chapters:
            payload["chapters"] = [chapter.to_dict() for chapter in self.chapters]
        return payload


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)
    chapter_number = db.Column(db.Integer, nullable=False)
    content = db.Column(db.Text, nullable=False)
    prompt = db.Column(db.Text, nullable=True)
    structural_metadata = db.Column(db.Text, nullable=True)
    rating = db.Column(db.Integer, nullable=True)
    was_truncated = db.Column(db.Boolean, nullable=False, default=False)
    used_fallback = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("story_id", "chapter_number", name="uq_chapter_story_number"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.chapter_number} of story {self.story_id}>"

    @property
    def arc_step(self) -> Optional[Dict[str, str]]:
        if not self.structural_metadata:
            return None
        try:
            data = json.loads(self.structural_metadata)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "chapter_number": self.chapter_number,
            "content": self.content,
            "prompt": self.prompt,
            "structural_metadata": self.arc_step,
            "rating": self.rating,
            "was_truncated": self.was_truncated,
            "used_fallback": self.used_fallback,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
