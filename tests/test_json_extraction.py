import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookstudio.services import json_extraction as extraction
from bookstudio.services.characters import CHARACTER_FIELD_SPEC
from bookstudio.services.plot import PLOT_POINT_FIELD_SPEC
from bookstudio.services.world import WORLD_ELEMENT_FIELD_SPEC


def test_valid_object_matches_json_loads():
    raw = json.dumps(
        {
            "name": "Aria Vell",
            "role": "protagonist",
            "description": "A cartographer who maps places that no longer exist.",
            "motivation": "Find her missing brother.",
        }
    )

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.record == json.loads(raw)
    assert result.stage == extraction.STAGE_PARSED
    assert result.failures == []


def test_code_fences_are_ignored():
    body = '{"name": "Aria", "role": "antagonist"}'
    fenced = f"Here you go:\n```json\n{body}\n```\nLet me know if you need changes."

    assert extraction.extract_record(fenced, CHARACTER_FIELD_SPEC) == extraction.extract_record(
        body, CHARACTER_FIELD_SPEC
    )


def test_braces_inside_strings_do_not_end_the_object():
    record = extraction.extract_record('{"name":"A{B}C","role":"supporting"}', CHARACTER_FIELD_SPEC)

    assert record == {"name": "A{B}C", "role": "supporting"}


def test_truncated_object_is_repaired():
    raw = '{"name":"Aria","role":"protagonist","description":"A brave'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.record == {"name": "Aria", "role": "protagonist"}
    assert result.stage == extraction.STAGE_REPAIRED


def test_trailing_comma_is_tolerated():
    record = extraction.extract_record('{"name":"Bo","role":"minor",}', CHARACTER_FIELD_SPEC)

    assert record == {"name": "Bo", "role": "minor"}


@pytest.mark.parametrize(
    "role, expected",
    [
        ("protagonist|supporting", "protagonist"),
        ("wizard", "supporting"),
        ("  Antagonist ", "antagonist"),
    ],
)
def test_role_is_normalised(role, expected):
    record = extraction.extract_record(json.dumps({"name": "X", "role": role}), CHARACTER_FIELD_SPEC)

    assert record["role"] == expected


def test_prose_with_quoted_pairs_is_scraped():
    raw = 'Sure! The villain is "name": "Zed" and they are the "role": "antagonist" of the story.'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.record == {"name": "Zed", "role": "antagonist"}
    assert result.stage == extraction.STAGE_SCRAPED
    assert result.failures == [extraction.NO_OBJECT_FOUND]


def test_unusable_text_returns_none():
    result = extraction.run_extraction("I'm sorry, I can't help with that request.", CHARACTER_FIELD_SPEC)

    assert result.record is None
    assert not result.succeeded
    assert result.failures == [extraction.NO_OBJECT_FOUND, extraction.INCOMPLETE_MANUAL_SCRAPE]


def test_markdown_emphasis_is_removed_from_values():
    record = extraction.extract_record('{"name":"**Mira**","role":"supporting"}', CHARACTER_FIELD_SPEC)

    assert record["name"] == "Mira"


def test_non_string_input_is_treated_as_empty():
    assert extraction.extract_record(None, CHARACTER_FIELD_SPEC) is None


def test_pretty_printed_object_with_raw_newlines_in_values():
    raw = '{\n  "name": "Mira",\n  "backstory": "Line one\nLine two",\n  "role": "minor"\n}'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.stage == extraction.STAGE_PARSED
    assert result.record["backstory"] == "Line one\nLine two"


def test_truncated_pretty_printed_object_keeps_complete_values():
    raw = '```json\n{\n  "name": "Aria",\n  "role": "protagonist|minor",\n  "backstory": "Born in the'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.record == {"name": "Aria", "role": "protagonist"}
    assert result.stage == extraction.STAGE_REPAIRED


def test_balanced_object_with_bad_syntax_falls_back_to_scraper():
    raw = '{"name": "Zed", "role": antagonist}'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.record == {"name": "Zed"}
    assert result.stage == extraction.STAGE_SCRAPED
    assert result.failures == [extraction.UNPARSABLE_SYNTAX]


def test_trailing_key_strip_does_not_rescue_a_balanced_object():
    # In a closed object the only comma-quote tail sits inside the last string.
    raw = '{"name": "Zed" "notes": "wary, "}'

    result = extraction.run_extraction(raw, CHARACTER_FIELD_SPEC)

    assert result.stage == extraction.STAGE_SCRAPED
    assert result.record == {"name": "Zed", "notes": "wary, "}
    assert result.failures == [extraction.UNPARSABLE_SYNTAX]


def test_unrecoverable_truncation_without_required_field_fails():
    result = extraction.run_extraction('{"name": "Ari', CHARACTER_FIELD_SPEC)

    assert result.record is None
    assert result.failures == [
        extraction.UNRECOVERABLE_TRUNCATION,
        extraction.INCOMPLETE_MANUAL_SCRAPE,
    ]


def test_empty_object_is_not_a_record():
    result = extraction.run_extraction("{}", CHARACTER_FIELD_SPEC)

    assert result.record is None
    assert extraction.UNPARSABLE_SYNTAX in result.failures


def test_normalize_response_strips_fences_and_emphasis():
    assert extraction.normalize_response("```JSON\n{}```") == "{}"
    assert extraction.normalize_response("Use **bold** and *italic* text") == "Use bold and italic text"
    assert extraction.normalize_response("  keep\twhitespace  ") == "  keep\twhitespace  "


def test_find_balanced_object_reports_completeness():
    assert extraction.find_balanced_object("no braces here") is None

    complete = extraction.find_balanced_object('prefix {"a": {"b": "}"}} suffix {')
    assert complete == extraction.ObjectCandidate(text='{"a": {"b": "}"}}', complete=True)

    escaped = extraction.find_balanced_object(r'{"quote": "she said \"}\" loudly"} tail')
    assert escaped.complete
    assert escaped.text.endswith('loudly"}')

    partial = extraction.find_balanced_object('text {"a": "b", "c": {')
    assert partial == extraction.ObjectCandidate(text='{"a": "b", "c": {', complete=False)


def test_repair_cuts_back_to_last_complete_value():
    repaired = extraction.repair_truncated_object('{"name":"Aria","role":"protagonist","descr')

    assert repaired == '{"name":"Aria","role":"protagonist"}'


def test_repair_keeps_final_value_without_comma():
    repaired = extraction.repair_truncated_object('{"name": "Aria"')

    assert json.loads(repaired) == {"name": "Aria"}


def test_repair_escapes_control_characters():
    repaired = extraction.repair_truncated_object('{"name": "Aria", "notes": "a\tb", "arc": "unfin')

    assert json.loads(repaired) == {"name": "Aria", "notes": "a\tb"}


def test_strip_trailing_commas():
    assert extraction.strip_trailing_commas('{"a": [1, 2, ], }') == '{"a": [1, 2]}'


def test_escape_control_characters_only_inside_strings():
    text = '{\n\t"a": "x\ty\x07z"\r\n}'

    escaped = extraction.escape_control_characters(text)

    assert escaped == '{\n\t"a": "x\\tyz"\r\n}'
    assert json.loads(escaped) == {"a": "x\tyz"}


def test_scrape_fields_unescapes_newlines_and_ignores_case():
    raw = 'Broken output: {"NAME": "Line\\nTwo", "role": "villain", "notes": "said \\"hi\\""'

    record = extraction.scrape_fields(raw, CHARACTER_FIELD_SPEC)

    assert record == {"name": "Line\nTwo", "role": "supporting", "notes": 'said \\"hi\\"'}


def test_scrape_fields_requires_non_empty_required_field():
    assert extraction.scrape_fields('"name": "", "role": "minor"', CHARACTER_FIELD_SPEC) is None


def test_normalize_enum_fields_handles_missing_and_non_string_values():
    assert extraction.normalize_enum_fields({"name": "A"}, CHARACTER_FIELD_SPEC) == {"name": "A"}
    assert extraction.normalize_enum_fields({"name": "A", "role": 3}, CHARACTER_FIELD_SPEC)["role"] == "supporting"


def test_world_element_type_defaults_to_location():
    record = extraction.extract_record('{"name": "Ashfall", "type": "volcano"}', WORLD_ELEMENT_FIELD_SPEC)

    assert record == {"name": "Ashfall", "type": "location"}


def test_plot_point_scrape_requires_title():
    raw = 'The next beat: "title": "The Bridge Falls", "type": "CLIMAX|event"'

    assert extraction.extract_record(raw, PLOT_POINT_FIELD_SPEC) == {
        "title": "The Bridge Falls",
        "type": "climax",
    }
    assert extraction.extract_record('"name": "Not a plot point"', PLOT_POINT_FIELD_SPEC) is None


def test_custom_field_spec():
    spec = extraction.FieldSpec(
        required_field="label",
        known_fields=("label", "mood"),
        enum_fields=(extraction.EnumField(field="mood", accepted=("calm", "tense"), default="calm"),),
    )

    assert extraction.extract_record('{"label": "Dusk", "mood": "Tense"}', spec) == {
        "label": "Dusk",
        "mood": "tense",
    }
