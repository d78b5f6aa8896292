"""
Unit tests for configuration loading.
"""

from pathlib import Path

import pytest
import yaml

from reprogrammer.config.loader import (
    ConfigurationError,
    create_config_from_args,
    generate_default_config,
    load_config_from_yaml,
)
from reprogrammer.config.models import LLMProvider

EXAMPLE_SETTINGS = Path(__file__).parent.parent.parent / "examples" / "settings.yaml"

NESTED = {
    "project": {"name": "shop", "source_root": "./src", "output_dir": "./out"},
    "language": {
        "target_language": "python",
        "input_extension": "java",
        "output_extension": "py",
        "prompt": "Translate to Python",
    },
    "llm": {"provider": "ollama", "model": "codellama"},
    "translation": {"max_repair_depth": 2},
}


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture(autouse=True)
def no_api_keys(monkeypatch):
    for name in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_load_nested_config(temp_dir):
    config = load_config_from_yaml(write_yaml(temp_dir / "settings.yaml", NESTED))

    assert config.project.name == "shop"
    assert config.language.input_extension == ".java"
    assert config.language.output_extension == ".py"
    assert config.llm.provider == LLMProvider.OLLAMA
    assert config.translation.max_repair_depth == 2
    assert config.project.effective_state_dir == Path("./out/.reprogrammer")


def test_load_flat_example_settings():
    config = load_config_from_yaml(EXAMPLE_SETTINGS)

    assert config.llm.provider == LLMProvider.OPENAI
    assert config.llm.api_url == "https://api.openai.com/v1"
    assert config.language.target_language == "python"
    assert config.translation.merge_small_files
    assert config.project.source_root == Path("./java_inventory")


def test_api_key_from_environment(temp_dir, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    data = dict(NESTED, llm={"provider": "openai"})

    config = load_config_from_yaml(write_yaml(temp_dir / "settings.yaml", data))

    assert config.llm.api_key == "sk-test"


@pytest.mark.parametrize("missing", ["target_language", "input_extension", "output_extension", "prompt"])
def test_missing_required_setting(temp_dir, missing):
    language = {k: v for k, v in NESTED["language"].items() if k != missing}
    data = dict(NESTED, language=language)

    with pytest.raises(ConfigurationError, match=f"Missing required setting: {missing}"):
        load_config_from_yaml(write_yaml(temp_dir / "settings.yaml", data))


def test_missing_file(temp_dir):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config_from_yaml(temp_dir / "nope.yaml")


@pytest.mark.parametrize("content", ["", "just a string", "key: [unclosed"])
def test_malformed_files(temp_dir, content):
    path = temp_dir / "settings.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationError):
        load_config_from_yaml(path)


def test_invalid_block_regex(temp_dir):
    data = dict(NESTED, language=dict(NESTED["language"], block_start_keyword="(unclosed"))

    with pytest.raises(ConfigurationError, match="validation failed"):
        load_config_from_yaml(write_yaml(temp_dir / "settings.yaml", data))


def test_create_config_from_args(temp_dir):
    config = create_config_from_args(
        source_dir=temp_dir / "src",
        output_dir=temp_dir / "out",
        target_language="java",
        input_extension=".py",
        output_extension=".java",
        include_meta_context=True,
        model="gpt-4o",
        package_name="com.example",
        merge_small_files=None,
    )

    assert config.language.prompt == "Translate the following code to java"
    assert config.translation.include_meta_context
    assert not config.translation.merge_small_files
    assert config.llm.model == "gpt-4o"
    assert config.language.package_name == "com.example"
    assert config.project.state_dir == temp_dir / "out" / ".reprogrammer"


def test_create_config_from_args_overrides_base(temp_dir):
    base = load_config_from_yaml(write_yaml(temp_dir / "settings.yaml", NESTED))

    config = create_config_from_args(
        source_dir=temp_dir / "other",
        output_dir=temp_dir / "out",
        target_language="python",
        input_extension=".java",
        output_extension=".py",
        base=base,
        max_repair_rounds=1,
    )

    assert config.language.prompt == "Translate to Python"
    assert config.llm.provider == LLMProvider.OLLAMA
    assert config.translation.max_repair_depth == 2
    assert config.translation.max_repair_rounds == 1
    assert config.project.source_root == temp_dir / "other"


def test_create_config_rejects_unknown_option(temp_dir):
    with pytest.raises(ConfigurationError, match="Unknown option: colour"):
        create_config_from_args(
            source_dir=temp_dir,
            output_dir=temp_dir,
            target_language="java",
            input_extension=".py",
            output_extension=".java",
            colour="blue",
        )


def test_generate_default_config_round_trips(temp_dir):
    path = temp_dir / "nested" / "settings.yaml"
    generate_default_config(path)

    config = load_config_from_yaml(path)

    assert config.language.target_language == "python"
    assert config.translation.max_repair_depth == 3
