from reconciler.services.ai_prompt_schemas import ExtractionResult
from reconciler.services.ai_response_validation import (
    iter_json_objects,
    parse_json_object,
    parse_model_response,
    validate_model,
)


def test_parse_json_object_handles_code_fence():
    payload = parse_json_object('```json\n{"summary":"Hello","concerns":["rates"]}\n```')
    assert payload == {"summary": "Hello", "concerns": ["rates"]}


def test_parse_json_object_finds_object_in_prose():
    payload = parse_json_object('Here you go: {"summary": "ok"} hope that helps')
    assert payload == {"summary": "ok"}


def test_parse_json_object_returns_none_for_garbage():
    assert parse_json_object("no json here") is None
    assert parse_json_object("[1, 2, 3]") is None


def test_iter_json_objects_skips_broken_candidates():
    text = 'prefix {broken {"a": 1} middle {"b": {"c": 2}}'
    assert list(iter_json_objects(text)) == [{"a": 1}, {"b": {"c": 2}}]


def test_validate_model_returns_instance():
    model = validate_model(ExtractionResult, {"summary": "Hi", "lead_temperature": "hot"})
    assert model is not None
    assert model.lead_temperature == "hot"


def test_validate_model_rejects_out_of_range():
    assert validate_model(ExtractionResult, {"sentiment_score": 3.0}) is None


def test_parse_model_response_strict():
    model = parse_model_response(ExtractionResult, '{"summary": "Direct"}')
    assert model.summary == "Direct"


def test_parse_model_response_falls_back_to_first_valid_object():
    text = (
        "Sure! Draft: {\"sentiment_score\": 5} "
        "Final answer: {\"summary\": \"Second\", \"qualification_score\": 40}"
    )
    model = parse_model_response(ExtractionResult, text)
    assert model is not None
    assert model.summary == "Second"
    assert model.qualification_score == 40


def test_parse_model_response_returns_none_when_nothing_validates():
    assert parse_model_response(ExtractionResult, "I could not find anything.") is None
    assert parse_model_response(ExtractionResult, '{"lead_temperature": "lukewarm"}') is None
