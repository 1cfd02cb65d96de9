from ollama_proxy.proxy.extraction import extract_metrics, first_present, parse_json_body


def test_extracts_ollama_generate_metrics() -> None:
    metrics = extract_metrics(
        {"model": "llama2", "prompt": "hi", "stream": False},
        {"model": "llama2", "response": "hello", "prompt_eval_count": 3, "eval_count": 2},
    )

    assert metrics.model == "llama2"
    assert metrics.input_tokens == 3
    assert metrics.output_tokens == 2
    assert metrics.total_tokens == 5
    assert metrics.model_parameters is None
    assert metrics.stream_mode is False


def test_falls_back_to_openai_style_usage() -> None:
    metrics = extract_metrics(
        {"messages": []},
        {"model": "qwen", "usage": {"prompt_tokens": 11, "completion_tokens": 7}},
    )

    assert metrics.model == "qwen"
    assert (metrics.input_tokens, metrics.output_tokens, metrics.total_tokens) == (11, 7, 18)


def test_model_falls_back_to_message_level_then_unknown() -> None:
    assert extract_metrics({}, {"message": {"model": "phi3"}}).model == "phi3"
    assert extract_metrics(None, None).model == "unknown"


def test_missing_bodies_default_everything() -> None:
    metrics = extract_metrics(None, None)

    assert metrics.input_tokens == 0
    assert metrics.output_tokens == 0
    assert metrics.total_tokens == 0
    assert metrics.model_parameters is None
    assert metrics.stream_mode is False


def test_model_parameters_only_include_whitelisted_keys_present() -> None:
    metrics = extract_metrics(
        {"model": "llama2", "temperature": 0.7, "top_k": 40, "seed": 1, "stream": True},
        None,
    )

    assert metrics.model_parameters == {"temperature": 0.7, "top_k": 40}
    assert metrics.stream_mode is True


def test_first_present_skips_missing_and_empty_values() -> None:
    source = {"a": {"b": None}, "c": "", "d": "found"}

    assert first_present([(source, "a.b"), (source, "c"), (source, "d")], default="x") == "found"
    assert first_present([(None, "a"), (source, "zzz")], default="x") == "x"


def test_parse_json_body_handles_objects_ndjson_and_garbage() -> None:
    assert parse_json_body(b'{"model": "llama2"}') == {"model": "llama2"}
    assert parse_json_body(b'{"done": false}\n{"done": true, "eval_count": 9}\n') == {"done": True, "eval_count": 9}
    assert parse_json_body(b"[1, 2, 3]") is None
    assert parse_json_body(b"not json") is None
    assert parse_json_body(b"") is None
