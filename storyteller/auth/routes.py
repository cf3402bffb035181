from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from ..extensions import db, login_manager
from ..models import User
from . import bp
from .forms import LoginForm, RegistrationForm


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required."}), 401


@bp.before_request
def require_json_body():
    # Cross-site HTML forms cannot send application/json without a CORS preflight.
    if request.method == "POST" and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415
    return None


@bp.route("/register", methods=["POST"])
def register():
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    form = RegistrationForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid registration details.", "fields": form.errors}), 400

    user = User(email=form.email.data, display_name=form.display_name.data)
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    return jsonify({"user": user.to_dict()}), 201


@bp.route("/login", methods=["POST"])
def login():
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid login details.", "fields": form.errors}), 400

    user = User.query.filter_by(email=form.email.data).first()
    if not user or not user.check_password(form.password.data):
        return jsonify({"error": "Invalid email or password."}), 401

    login_user(user, remember=form.remember.data)
    current_app.logger.info("User %s signed in.", user.id)
    return jsonify({"user": user.to_dict()})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
