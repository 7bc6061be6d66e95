import pytest

from common.errors import InvalidRequestError, UnknownModelError
from inference_module import GenerationConfig, ModelIdentity
from inference_module.prompts import END_OF_TURN, format_llama3_chat


@pytest.mark.parametrize(
    "name",
    [
        "llama-3.2-1b-instruct",
        "LLaMA-3.2-1B-Instruct",
        "  llama_3.2_1b_instruct  ",
        "llama32-1b",
        "LLAMA32_1B",
        "Llama 3.2 1B Instruct",
    ],
)
def test_resolve_is_case_and_separator_insensitive(name):
    assert ModelIdentity.resolve(name) is ModelIdentity.LLAMA32_1B
    assert ModelIdentity.parse(name) is ModelIdentity.parse("llama-3.2-1b-instruct")


def test_resolve_other_variants():
    assert ModelIdentity.resolve("llama3.1-8b") is ModelIdentity.LLAMA31_8B
    assert ModelIdentity.resolve("Llama-3.2-3B-Instruct") is ModelIdentity.LLAMA32_3B


@pytest.mark.parametrize("name", ["gpt-4", "", "llama", None, 42])
def test_unknown_names_fail_explicitly(name):
    assert ModelIdentity.resolve(name) is None
    with pytest.raises(UnknownModelError) as excinfo:
        ModelIdentity.parse(name)
    assert excinfo.value.status_code == 400
    assert "model_name" in excinfo.value.to_payload()


def test_model_catalogue():
    assert ModelIdentity.default() is ModelIdentity.LLAMA32_1B
    assert ModelIdentity.available_models() == [
        "llama-3.1-8b-instruct",
        "llama-3.2-1b-instruct",
        "llama-3.2-3b-instruct",
    ]
    assert ModelIdentity.LLAMA31_8B.max_seq_len == 8192
    assert str(ModelIdentity.LLAMA32_3B) == "Llama-3.2-3B-Instruct"


def test_generation_defaults():
    config = GenerationConfig()
    assert (config.max_new_tokens, config.temperature, config.top_p, config.seed) == (256, 0.6, 0.9, 42)


def test_generation_overrides_ignore_none():
    base = GenerationConfig()
    updated = base.with_overrides(max_new_tokens=8, temperature=None, seed=7)
    assert updated.max_new_tokens == 8
    assert updated.temperature == 0.6
    assert updated.seed == 7
    assert base.max_new_tokens == 256


@pytest.mark.parametrize(
    "overrides",
    [{"max_new_tokens": 0}, {"temperature": -0.1}, {"top_p": 0.0}, {"top_p": 1.5}],
)
def test_generation_overrides_validated(overrides):
    with pytest.raises(InvalidRequestError):
        GenerationConfig().with_overrides(**overrides)


def test_llama3_template_inserts_default_system_block():
    prompt = format_llama3_chat([{"role": "user", "content": "hi"}])
    assert prompt.startswith("<|begin_of_text|><|start_header_id|>system<|end_header_id|>")
    assert f"<|start_header_id|>user<|end_header_id|>\n\nhi{END_OF_TURN}" in prompt
    assert prompt.endswith("<|start_header_id|>assistant<|end_header_id|>\n\n")


def test_llama3_template_keeps_given_system_prompt():
    prompt = format_llama3_chat(
        [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "tool", "content": "ignored role"},
        ]
    )
    assert prompt.count("<|start_header_id|>system<|end_header_id|>") == 1
    assert "Be terse." in prompt
    assert f"<|start_header_id|>user<|end_header_id|>\n\nignored role{END_OF_TURN}" in prompt
