from flask import jsonify
from flask_login import current_user
from werkzeug.exceptions import HTTPException

from ..services.chapter_length import CHAPTER_LENGTH_SPECS
from . import bp


@bp.route("/")
def index():
    payload = {"service": "storyteller", "authenticated": current_user.is_authenticated}
    if current_user.is_authenticated:
        payload["user"] = current_user.to_dict()
    return jsonify(payload)


@bp.route("/chapter-lengths")
def chapter_lengths():
    return jsonify(
        {
            "chapter_lengths": [
                {"label": category.value, **spec.as_dict()}
                for category, spec in CHAPTER_LENGTH_SPECS.items()
            ]
        }
    )


@bp.app_errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    return jsonify({"error": exc.description}), exc.code
