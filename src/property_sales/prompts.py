"""Prompt management - loads and formats prompts from YAML config."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


def _get_config_path() -> Path:
    """Get the prompts config file path."""
    env_path = os.getenv("PROMPTS_CONFIG_PATH")
    if env_path:
        return Path(env_path)

    candidates = [
        Path("config/prompts.yaml"),
        Path("/app/config/prompts.yaml"),  # Docker
        Path(__file__).parents[2] / "config" / "prompts.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        "prompts.yaml not found. Set PROMPTS_CONFIG_PATH or place in config/prompts.yaml"
    )


@lru_cache(maxsize=1)
def _load_config() -> dict[str, Any]:
    """Load and cache the prompts configuration."""
    config_path = _get_config_path()
    with config_path.open() as f:
        result: dict[str, Any] = yaml.safe_load(f)
        return result


def get_company_context() -> dict[str, str]:
    """Get brokerage context for prompt interpolation."""
    config = _load_config()
    company: dict[str, str] = config.get("company", {})
    return company


def get_prompt(name: str, prompt_type: str = "system") -> str:
    """Get a prompt template.

    Args:
        name: Prompt name (interpret, modifications, lead_reply, social_post)
        prompt_type: Prompt type (system or user)
    """
    prompts = _load_config().get("prompts", {})

    if name not in prompts:
        raise KeyError(f"Unknown prompt: {name}")

    templates = prompts[name]
    if prompt_type not in templates:
        raise KeyError(f"Unknown prompt type '{prompt_type}' for prompt '{name}'")

    result: str = templates[prompt_type]
    return result


def format_prompt(name: str, prompt_type: str = "system", /, **kwargs: Any) -> str:
    """Get and format a prompt with provided values.

    Company context is merged in first; kwargs take precedence. The first two
    parameters are positional-only so templates may use ``{name}``.
    """
    template = get_prompt(name, prompt_type)
    context = {**get_company_context(), **kwargs}
    return _safe_format(template, context)


def _safe_format(template: str, values: dict[str, Any]) -> str:
    """Format template, leaving unmatched placeholders as-is.

    Literal JSON braces in the templates survive because only known
    placeholders are replaced.
    """
    result = template
    for key, value in values.items():
        placeholder = "{" + key + "}"
        if placeholder in result:
            result = result.replace(placeholder, str(value))
    return result


def reload_config() -> None:
    """Reload the prompts configuration (clears cache)."""
    _load_config.cache_clear()
