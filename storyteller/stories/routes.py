from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from flask import Response, abort, current_app, jsonify, request
from flask_login import current_user, login_required
from werkzeug.utils import secure_filename

from ..extensions import db
from ..models import Chapter, Story
from ..services.chapter_generation import (
    ChapterGenerationError,
    StoryPreferences,
    generate_next_chapter,
    generate_opening_chapter,
)
from ..services.chapter_length import is_chapter_length
from ..services.continuations import ContinuationError, generate_continuations
from ..services.story_arc import StoryArcError, arc_step_for_chapter, generate_story_arc
from ..services.story_export import EXPORT_FORMATS, StoryExportError, export_story_to_pdf, export_story_to_txt
from . import bp

STORY_PARAMETER_FIELDS = ("reading_level", "story_length", "chapter_length", "structural_prompt")


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_reading_level(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 12


def _parse_story_parameters(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Pick the story preference fields present in ``payload`` and validate them."""

    params = {field: payload[field] for field in STORY_PARAMETER_FIELDS if payload.get(field) is not None}

    if "reading_level" in params and not _is_reading_level(params["reading_level"]):
        return {}, "Invalid story parameters"
    if "story_length" in params and not _is_positive_int(params["story_length"]):
        return {}, "Invalid story parameters"
    if "chapter_length" in params and not is_chapter_length(params["chapter_length"]):
        return {}, "Invalid story parameters"
    if "structural_prompt" in params and not isinstance(params["structural_prompt"], str):
        return {}, "Invalid story parameters"

    if "structural_prompt" in params:
        params["structural_prompt"] = params["structural_prompt"].strip() or None
    return params, None


def _get_owned_story(story_id: int) -> Story:
    story = db.get_or_404(Story, story_id, description="Story not found.")
    if story.owner_id != current_user.id:
        abort(403, description="Forbidden")
    return story


def _arc_step_metadata(arc_step: Optional[Dict[str, str]]) -> Optional[str]:
    return json.dumps(arc_step, ensure_ascii=False) if arc_step else None


@bp.route("/stories", methods=["GET"])
@login_required
def list_stories():
    stories = (
        Story.query.filter_by(owner_id=current_user.id)
        .order_by(Story.updated_at.desc())
        .all()
    )
    return jsonify({"stories": [story.to_dict() for story in stories]})


@bp.route("/stories", methods=["POST"])
@login_required
def start_story():
    payload = request.get_json(silent=True) or {}
    title = payload.get("title")
    initial_prompt = payload.get("initial_prompt")

    if not isinstance(title, str) or not title.strip() or not isinstance(initial_prompt, str) or not initial_prompt.strip():
        return jsonify({"error": "Missing title or initial_prompt"}), 400

    params, error = _parse_story_parameters(payload)
    if error:
        return jsonify({"error": error}), 400

    params.setdefault("story_length", current_app.config["DEFAULT_STORY_LENGTH"])
    params.setdefault("chapter_length", current_app.config["DEFAULT_CHAPTER_LENGTH"])
    preferences = StoryPreferences(**params)
    current_app.logger.info(
        "Starting story '%s' for user %s (%s, %s chapters)",
        title.strip(),
        current_user.id,
        preferences.chapter_length,
        preferences.story_length,
    )

    try:
        arc = generate_story_arc(title, initial_prompt, preferences)
        story = Story(
            owner_id=current_user.id,
            title=title.strip(),
            initial_prompt=initial_prompt.strip(),
            story_arc=json.dumps(arc.to_dict(), ensure_ascii=False),
            **params,
        )
        db.session.add(story)

        arc_step = arc_step_for_chapter(story.arc_steps, 1)
        result = generate_opening_chapter(story.title, story.initial_prompt, preferences, arc_step=arc_step)
    except (StoryArcError, ChapterGenerationError) as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    except Exception:  # pragma: no cover - defensive logging for unexpected states
        db.session.rollback()
        current_app.logger.exception("Unexpected error while starting a story")
        return jsonify({"error": "We couldn't start your story right now. Please try again."}), 500

    chapter = Chapter(
        story=story,
        chapter_number=1,
        content=result.content,
        prompt=story.initial_prompt,
        structural_metadata=_arc_step_metadata(arc_step),
        was_truncated=result.truncated,
        used_fallback=result.used_fallback,
    )
    if result.is_final:
        story.status = "complete"
    db.session.add(chapter)
    db.session.commit()

    return jsonify({"story": story.to_dict(), "chapter": chapter.to_dict()}), 201


@bp.route("/stories/<int:story_id>", methods=["GET"])
@login_required
def get_story(story_id: int):
    story = _get_owned_story(story_id)
    return jsonify({"story": story.to_dict(include_chapters=True)})


@bp.route("/stories/<int:story_id>", methods=["PATCH"])
@login_required
def update_story(story_id: int):
    story = _get_owned_story(story_id)
    payload = request.get_json(silent=True) or {}

    params, error = _parse_story_parameters(payload)
    if error:
        return jsonify({"error": error}), 400

    title = payload.get("title")
    if title is not None:
        if not isinstance(title, str) or not title.strip():
            return jsonify({"error": "Invalid story parameters"}), 400
        story.title = title.strip()

    for field, value in params.items():
        setattr(story, field, value)
    story.updated_at = datetime.utcnow()
    db.session.commit()

    return jsonify({"story": story.to_dict()})


@bp.route("/stories/<int:story_id>", methods=["DELETE"])
@login_required
def delete_story(story_id: int):
    story = _get_owned_story(story_id)
    db.session.delete(story)
    db.session.commit()
    return jsonify({"success": True, "story_id": story_id})


@bp.route("/stories/<int:story_id>/chapters", methods=["POST"])
@login_required
def continue_story(story_id: int):
    story = _get_owned_story(story_id)
    payload = request.get_json(silent=True) or {}

    params, error = _parse_story_parameters(payload)
    if error:
        return jsonify({"error": error}), 400

    prompt = payload.get("prompt")
    if prompt is not None and not isinstance(prompt, str):
        return jsonify({"error": "Invalid story parameters"}), 400

    for field, value in params.items():
        setattr(story, field, value)

    chapters = list(story.chapters)
    if story.story_length and len(chapters) >= story.story_length:
        db.session.rollback()
        return jsonify({"error": "Story has reached its maximum number of chapters."}), 400

    chapter_number = len(chapters) + 1
    arc_step = arc_step_for_chapter(story.arc_steps, chapter_number)

    try:
        result = generate_next_chapter(
            story.title,
            [chapter.content for chapter in chapters],
            story.preferences,
            chapter_number=chapter_number,
            arc_step=arc_step,
            user_prompt=prompt,
        )
    except ChapterGenerationError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    except Exception:  # pragma: no cover - defensive logging for unexpected states
        db.session.rollback()
        current_app.logger.exception("Unexpected error while continuing story %s", story_id)
        return jsonify({"error": "We couldn't continue your story right now. Please try again."}), 500

    chapter = Chapter(
        story=story,
        chapter_number=chapter_number,
        content=result.content,
        prompt=(prompt or "").strip() or None,
        structural_metadata=_arc_step_metadata(arc_step),
        was_truncated=result.truncated,
        used_fallback=result.used_fallback,
    )
    if result.is_final:
        story.status = "complete"
    story.updated_at = datetime.utcnow()
    db.session.add(chapter)
    db.session.commit()

    return jsonify({"story": story.to_dict(), "chapter": chapter.to_dict()}), 201


@bp.route("/stories/<int:story_id>/continuations", methods=["GET"])
@login_required
def get_continuations(story_id: int):
    story = _get_owned_story(story_id)
    if not story.chapters:
        return jsonify({"error": "The story has no chapters yet."}), 400

    latest = story.chapters[-1]
    try:
        result = generate_continuations(latest.content, story.preferences)
    except ContinuationError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(
        {
            "story_id": story.id,
            "chapter_number": latest.chapter_number,
            "continuations": [{"description": option} for option in result.options],
            "used_fallback": result.used_fallback,
        }
    )


@bp.route("/chapters/<int:chapter_id>/rating", methods=["POST"])
@login_required
def rate_chapter(chapter_id: int):
    payload = request.get_json(silent=True) or {}
    rating = payload.get("rating")
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        return jsonify({"error": "Missing or invalid rating (must be 1-5)"}), 400

    chapter = db.get_or_404(Chapter, chapter_id, description="Chapter not found.")
    if chapter.story.owner_id != current_user.id:
        abort(403, description="Forbidden")

    chapter.rating = rating
    db.session.commit()
    return jsonify({"success": True, "chapter_id": chapter.id, "rating": rating})


@bp.route("/stories/<int:story_id>/export", methods=["GET"])
@login_required
def export_story(story_id: int):
    story = _get_owned_story(story_id)
    export_format = (request.args.get("format") or "txt").lower()
    if export_format not in EXPORT_FORMATS:
        return jsonify({"error": f"Unsupported export format: {export_format}"}), 400

    filename = f"{secure_filename(story.title) or 'story'}.{export_format}"
    try:
        if export_format == "pdf":
            body, mimetype = export_story_to_pdf(story), "application/pdf"
        else:
            body, mimetype = export_story_to_txt(story), "text/plain; charset=utf-8"
    except StoryExportError as exc:
        current_app.logger.warning("Export of story %s failed: %s", story_id, exc)
        return jsonify({"error": str(exc)}), 500

    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
