"""WTForms definitions used to validate JSON payloads sent to the API."""
from __future__ import annotations

from typing import Any, Mapping, Optional as OptionalType, Type, TypeVar

from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import FloatField, IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, InputRequired, Length, NumberRange, Optional

from .models import (
    CHAPTER_STATUSES,
    CHARACTER_ROLES,
    PLOT_POINT_TYPES,
    RELATION_TYPES,
    WORLD_ELEMENT_TYPES,
)
from .services.chapters import TARGET_LENGTHS

FormT = TypeVar("FormT", bound=FlaskForm)


class BookForm(FlaskForm):
    title = StringField("Title", validators=[InputRequired(message="Title is required"), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional()])
    genre = StringField("Genre", validators=[Optional(), Length(max=120)])
    target_audience = StringField("Target audience", validators=[Optional(), Length(max=120)])
    writing_style = TextAreaField("Writing style", validators=[Optional()])
    language = StringField("Language", validators=[Optional(), Length(max=10)])


class ChapterForm(FlaskForm):
    title = StringField("Title", validators=[Optional(), Length(max=200)])
    content = TextAreaField("Content", validators=[Optional()])
    summary = TextAreaField("Summary", validators=[Optional()])
    notes = TextAreaField("Notes", validators=[Optional()])
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf(CHAPTER_STATUSES, message="Unknown chapter status")],
    )


class CharacterForm(FlaskForm):
    name = StringField("Name", validators=[InputRequired(message="Name is required"), Length(max=120)])
    role = StringField(
        "Story role",
        validators=[Optional(), AnyOf(CHARACTER_ROLES, message="Unknown character role")],
    )
    description = TextAreaField("Description", validators=[Optional()])
    personality = TextAreaField("Personality", validators=[Optional()])
    backstory = TextAreaField("Backstory", validators=[Optional()])
    appearance = TextAreaField("Appearance", validators=[Optional()])
    motivation = TextAreaField("Motivation", validators=[Optional()])
    arc = TextAreaField("Character arc", validators=[Optional()])
    notes = TextAreaField("Notes", validators=[Optional()])
    image_url = StringField("Image URL", validators=[Optional(), Length(max=500)])


class CharacterRelationForm(FlaskForm):
    related_character_id = IntegerField(
        "Related character",
        validators=[InputRequired(message="related_character_id is required")],
    )
    relation_type = StringField(
        "Relation type",
        validators=[Optional(), AnyOf(RELATION_TYPES, message="Unknown relation type")],
    )
    description = TextAreaField("Description", validators=[Optional()])


class WorldElementForm(FlaskForm):
    name = StringField("Name", validators=[InputRequired(message="Name is required"), Length(max=150)])
    type = StringField(
        "Element type",
        validators=[Optional(), AnyOf(WORLD_ELEMENT_TYPES, message="Unknown world element type")],
    )
    description = TextAreaField("Description", validators=[Optional()])
    usage = TextAreaField("Usage", validators=[Optional()])
    history = TextAreaField("History", validators=[Optional()])
    image_url = StringField("Image URL", validators=[Optional(), Length(max=500)])


class PlotPointForm(FlaskForm):
    title = StringField("Title", validators=[InputRequired(message="Title is required"), Length(max=200)])
    type = StringField(
        "Plot point type",
        validators=[Optional(), AnyOf(PLOT_POINT_TYPES, message="Unknown plot point type")],
    )
    description = TextAreaField("Description", validators=[Optional()])


class AssistantRequestForm(FlaskForm):
    action = StringField("Action", validators=[InputRequired(message="Unknown action")])
    prompt = TextAreaField(
        "Instruction",
        validators=[InputRequired(message="Prompt is required"), Length(max=4000)],
    )
    target_id = IntegerField("Target", validators=[Optional()])


class ChapterGenerationForm(FlaskForm):
    prompt = TextAreaField("Instruction", validators=[Optional(), Length(max=4000)])
    chapter_id = IntegerField("Chapter", validators=[Optional()])
    target_length = StringField(
        "Target length",
        validators=[Optional(), AnyOf(tuple(TARGET_LENGTHS), message="Unknown target length")],
    )
    max_tokens = IntegerField("Max tokens", validators=[Optional(), NumberRange(min=1, max=32000)])
    temperature = FloatField("Temperature", validators=[Optional(), NumberRange(min=0, max=2)])


class SettingsForm(FlaskForm):
    api_endpoint = StringField("API endpoint", validators=[Optional(), Length(max=500)])
    api_key = StringField("API key", validators=[Optional(), Length(max=500)])
    model = StringField("Model", validators=[Optional(), Length(max=120)])
    temperature = FloatField("Temperature", validators=[Optional(), NumberRange(min=0, max=2)])
    max_tokens = IntegerField("Max tokens", validators=[Optional(), NumberRange(min=1, max=32000)])
    system_prompt = TextAreaField("System prompt", validators=[Optional()])


def form_from_payload(
    form_class: Type[FormT],
    payload: Mapping[str, Any],
    *,
    defaults: OptionalType[Mapping[str, Any]] = None,
) -> FormT:
    """Build ``form_class`` from a JSON body.

    ``defaults`` holds the current values of the entity being patched; keys in
    ``payload`` override them. Nested JSON values are ignored.
    """

    merged = {}
    for source in (defaults or {}, payload):
        for key, value in source.items():
            if value is None:
                merged.pop(key, None)
            elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
                merged[key] = str(value)
    return form_class(formdata=ImmutableMultiDict(merged), meta={"csrf": False})


def first_error(form: FlaskForm) -> str:
    for errors in form.errors.values():
        for error in errors:
            return str(error)
    return "Invalid request payload."
