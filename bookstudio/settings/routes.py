from __future__ import annotations

from flask import jsonify, request

from ..extensions import db
from ..forms import SettingsForm, first_error, form_from_payload
from ..models import GlobalSettings
from . import bp

SETTINGS_FIELDS = ("api_endpoint", "model", "temperature", "max_tokens", "system_prompt")


@bp.route("", methods=["GET"])
def get_settings():
    settings = GlobalSettings.get_or_create()
    db.session.commit()
    return jsonify(settings.to_dict())


@bp.route("", methods=["PATCH"])
def update_settings():
    settings = GlobalSettings.get_or_create()
    payload = request.get_json(silent=True)
    payload = payload if isinstance(payload, dict) else {}

    defaults = {field: getattr(settings, field) for field in SETTINGS_FIELDS}
    form = form_from_payload(SettingsForm, payload, defaults=defaults)
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    settings.api_endpoint = (form.api_endpoint.data or "").strip() or "https://api.openai.com/v1"
    settings.model = (form.model.data or "").strip() or "gpt-4o-mini"
    if form.temperature.data is not None:
        settings.temperature = form.temperature.data
    if form.max_tokens.data is not None:
        settings.max_tokens = form.max_tokens.data
    settings.system_prompt = (form.system_prompt.data or "").strip() or None

    # The masked key is echoed back by the client; only a new value replaces it.
    if "api_key" in payload:
        api_key = (form.api_key.data or "").strip()
        if not api_key:
            settings.api_key = None
        elif not api_key.startswith("****"):
            settings.api_key = api_key

    db.session.commit()
    return jsonify(settings.to_dict())
