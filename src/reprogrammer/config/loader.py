"""
Configuration loader for Reprogrammer.

Handles loading configuration from YAML files, command-line arguments and
environment variables.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from reprogrammer.errors import ConfigurationError

from .models import (
    LanguageSettings,
    LLMConfig,
    LLMProvider,
    ProjectConfig,
    ReprogrammerConfig,
    TranslationConfig,
)

__all__ = [
    "ConfigurationError",
    "REQUIRED_SETTINGS",
    "apply_api_key_from_env",
    "create_config_from_args",
    "generate_default_config",
    "load_config_from_yaml",
]

REQUIRED_SETTINGS = ("target_language", "input_extension", "output_extension", "prompt")

# Flat keys of the original settings.yaml that configure the service client.
_FLAT_LLM_KEYS = {
    "ai_service": "provider",
    "openai_api_key": "api_key",
    "claude_api_key": "api_key",
    "openai_model": "model",
    "claude_model": "model",
    "custom_text_generation_model": "model",
    "openai_api_url": "api_url",
    "claude_api_url": "api_url",
    "custom_text_generation_api_url": "api_url",
}

_API_KEY_ENV = {
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.OPENROUTER: "OPENROUTER_API_KEY",
    LLMProvider.CLAUDE: "ANTHROPIC_API_KEY",
}


def _base_url(url: str) -> str:
    """Turn a full endpoint URL into the base URL the OpenAI SDK expects."""
    url = url.rstrip("/")
    for suffix in ("/chat/completions", "/messages"):
        if url.endswith(suffix):
            return url[: -len(suffix)]
    return url


def _normalize_raw_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Accept both the nested layout and the original flat settings.yaml layout."""
    normalized: dict[str, Any] = {
        "project": dict(raw.get("project") or {}),
        "language": dict(raw.get("language") or {}),
        "llm": dict(raw.get("llm") or {}),
        "translation": dict(raw.get("translation") or {}),
    }

    language_fields = set(LanguageSettings.model_fields)
    translation_fields = set(TranslationConfig.model_fields)
    project_fields = set(ProjectConfig.model_fields)
    llm_fields = set(LLMConfig.model_fields)

    for key, value in raw.items():
        if key in normalized:
            continue
        if key in language_fields:
            normalized["language"].setdefault(key, value)
        elif key in translation_fields:
            normalized["translation"].setdefault(key, value)
        elif key in project_fields:
            normalized["project"].setdefault(key, value)
        elif key in _FLAT_LLM_KEYS:
            target = _FLAT_LLM_KEYS[key]
            if target == "api_url" and value:
                value = _base_url(str(value))
            if value not in (None, ""):
                normalized["llm"].setdefault(target, value)
        elif key in llm_fields:
            normalized["llm"].setdefault(key, value)

    return normalized


def _validate_required(language: dict[str, Any]) -> None:
    for key in REQUIRED_SETTINGS:
        if language.get(key) in (None, ""):
            raise ConfigurationError(f"Missing required setting: {key}")


def apply_api_key_from_env(llm: LLMConfig) -> LLMConfig:
    """Fill the API key from the environment when the settings leave it out."""
    if llm.api_key:
        return llm
    env_var = _API_KEY_ENV.get(llm.provider)
    if env_var and os.environ.get(env_var):
        llm.api_key = os.environ[env_var]
    return llm


def _apply_environment(config: ReprogrammerConfig) -> ReprogrammerConfig:
    apply_api_key_from_env(config.llm)
    return config


def load_config_from_yaml(config_path: Path) -> ReprogrammerConfig:
    """Load configuration from a YAML file."""
    load_dotenv()

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if raw_config is None:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    normalized = _normalize_raw_config(raw_config)
    _validate_required(normalized["language"])

    try:
        config = ReprogrammerConfig(**normalized)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed:\n{e}")

    return _apply_environment(config)


def create_config_from_args(
    source_dir: Path,
    output_dir: Path,
    target_language: str,
    input_extension: str,
    output_extension: str,
    prompt: str | None = None,
    project_name: str | None = None,
    base: ReprogrammerConfig | None = None,
    **kwargs: Any,
) -> ReprogrammerConfig:
    """
    Create configuration from CLI arguments.

    When ``base`` is given (a config loaded from YAML), its values are used
    and only the explicit arguments override them.

    Extra keyword arguments are routed to the translation or llm section by
    field name (e.g. ``include_meta_context=True``, ``model="gpt-4o"``).
    """
    load_dotenv()

    language_data: dict[str, Any] = base.language.model_dump() if base else {}
    language_data.update(
        {
            "target_language": target_language,
            "input_extension": input_extension,
            "output_extension": output_extension,
        }
    )
    if prompt:
        language_data["prompt"] = prompt
    elif not language_data.get("prompt"):
        language_data["prompt"] = f"Translate the following code to {target_language}"
    _validate_required(language_data)

    translation_data = base.translation.model_dump() if base else {}
    llm_data = base.llm.model_dump() if base else {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if key in TranslationConfig.model_fields:
            translation_data[key] = value
        elif key in LLMConfig.model_fields:
            llm_data[key] = value
        elif key in LanguageSettings.model_fields:
            language_data[key] = value
        else:
            raise ConfigurationError(f"Unknown option: {key}")

    project_config = ProjectConfig(
        name=project_name or source_dir.name or "reprogrammer_project",
        source_root=source_dir,
        output_dir=output_dir,
        state_dir=output_dir / ".reprogrammer",
    )

    try:
        config = ReprogrammerConfig(
            project=project_config,
            language=LanguageSettings(**language_data),
            llm=LLMConfig(**llm_data),
            translation=TranslationConfig(**translation_data),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed:\n{e}")

    return _apply_environment(config)


def generate_default_config(output_path: Path) -> None:
    """Generate a default configuration file."""
    default_config = {
        "project": {
            "name": "my_project",
            "source_root": "./src",
            "output_dir": "./output",
        },
        "language": {
            "target_language": "python",
            "input_extension": ".java",
            "output_extension": ".py",
            "prompt": "Translate the following Java code to idiomatic Python 3",
            "max_chunk_size": 4000,
            "class_structure_threshold": 2000,
            "opening_tag": "<code>",
            "closing_tag": "</code>",
            "block_start_keyword": LanguageSettings.model_fields["block_start_keyword"].default,
            "block_end_keyword": "{",
            "block_open_symbol": "{",
            "block_close_symbol": "}",
        },
        "llm": {
            "provider": "openai",
            "model": "gpt-4-turbo",
            "temperature": 0.2,
            "max_tokens": 4096,
        },
        "translation": {
            "max_repair_depth": 3,
            "max_repair_rounds": 5,
            "include_meta_context": False,
            "generate_file_names": False,
            "merge_small_files": False,
        },
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
