"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags

Per-document request parameters are not part of this file; they are read
from the document metadata through :class:`RequestParameters`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    default_model: str = ""
    repair_model: str = "gpt-4"
    timeout_seconds: int = 120
    max_retries: int = 0
    context_windows: dict[str, int] = field(default_factory=dict)
    output_limits: dict[str, int] = field(default_factory=dict)
    models: list[str] = field(
        default_factory=lambda: [
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4-turbo",
            "gpt-4",
            "gpt-4-32k",
            "gpt-3.5-turbo",
            "gpt-3.5-turbo-16k",
        ]
    )


@dataclass
class ReductionConfig:
    hide_unhelpful_strategies: bool = False


@dataclass
class CompletionConfig:
    max_tool_rounds: int = 10
    max_continuations: int = 0
    tool_timeout_seconds: int = 30
    default_mode: str = "current_and_above"


@dataclass
class ToolsConfig:
    workspace_root: str = "."
    disabled: list[str] = field(default_factory=list)
    plugins_enabled: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    log_file: str = ""


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class NbchatConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    reduction: ReductionConfig = field(default_factory=ReductionConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "NBCHAT_LLM_API_BASE":            ("llm.api_base", str),
    "NBCHAT_LLM_API_KEY_ENV":         ("llm.api_key_env", str),
    "NBCHAT_LLM_MODEL":               ("llm.default_model", str),
    "NBCHAT_LLM_REPAIR_MODEL":        ("llm.repair_model", str),
    "NBCHAT_LLM_TIMEOUT":             ("llm.timeout_seconds", int),
    "NBCHAT_LLM_MAX_RETRIES":         ("llm.max_retries", int),
    "NBCHAT_REDUCTION_HIDE_UNHELPFUL": ("reduction.hide_unhelpful_strategies", bool),
    "NBCHAT_COMPLETION_MAX_TOOL_ROUNDS": ("completion.max_tool_rounds", int),
    "NBCHAT_COMPLETION_MAX_CONTINUATIONS": ("completion.max_continuations", int),
    "NBCHAT_COMPLETION_TOOL_TIMEOUT": ("completion.tool_timeout_seconds", int),
    "NBCHAT_TOOLS_WORKSPACE_ROOT":    ("tools.workspace_root", str),
    "NBCHAT_TOOLS_DISABLED":          ("tools.disabled", list),
    "NBCHAT_TOOLS_PLUGINS_ENABLED":   ("tools.plugins_enabled", bool),
    "NBCHAT_LOG_LEVEL":               ("logging.level", str),
    "NBCHAT_LOG_FILE":                ("logging.log_file", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> NbchatConfig:
    """
    Build an NbchatConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = NbchatConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        reduction=_build_section(ReductionConfig, raw.get("reduction", {})),
        completion=_build_section(CompletionConfig, raw.get("completion", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


# ---------------------------------------------------------------------------
# Per-document request parameters
# ---------------------------------------------------------------------------

class ParameterError(ValueError):
    """A per-document parameter value is out of range or malformed."""


@dataclass
class RequestParameters:
    """
    Optional request fields persisted per document.

    Only fields that are set end up in the request body; ``model`` and
    ``max_tokens`` are handled separately by the orchestrator.
    """

    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    n: int | None = None
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    logit_bias: dict[str, float] | None = None
    user: str | None = None

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any]) -> RequestParameters:
        return cls(
            model=_get_str(metadata, "model"),
            temperature=_get_float(metadata, "temperature"),
            top_p=_get_float(metadata, "top_p"),
            n=_get_int(metadata, "n"),
            max_tokens=_get_int(metadata, "max_tokens"),
            presence_penalty=_get_float(metadata, "presence_penalty"),
            frequency_penalty=_get_float(metadata, "frequency_penalty"),
            logit_bias=_get_record(metadata, "logit_bias"),
            user=_get_str(metadata, "user"),
        )

    def request_fields(self) -> dict[str, Any]:
        """Sampling fields to merge into the request body."""
        out: dict[str, Any] = {}
        for name in (
            "temperature",
            "top_p",
            "n",
            "presence_penalty",
            "frequency_penalty",
            "logit_bias",
            "user",
        ):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out

    @staticmethod
    def validate(key: str, raw: str) -> Any:
        """
        Parse and validate operator input for *key*.

        Raises ``ParameterError`` with a readable message on bad input.
        """
        if key not in PARAMETER_RULES:
            raise ParameterError(f"Unknown parameter: {key}")
        parser, check, description = PARAMETER_RULES[key]
        try:
            value = parser(raw)
        except (TypeError, ValueError) as exc:
            raise ParameterError(f"{key}: expected {description}") from exc
        if not check(value):
            raise ParameterError(f"{key}: expected {description}")
        return value


def _get_str(metadata: Mapping[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    if value is None:
        return None
    return str(value)


def _get_float(metadata: Mapping[str, Any], key: str) -> float | None:
    value = metadata.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r in document settings", key, value)
        return None


def _get_int(metadata: Mapping[str, Any], key: str) -> int | None:
    value = metadata.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer %s=%r in document settings", key, value)
        return None


def _get_record(metadata: Mapping[str, Any], key: str) -> dict[str, float] | None:
    value = metadata.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed %s in document settings", key)
            return None
    if not isinstance(value, dict):
        logger.warning("Ignoring %s: expected a JSON object", key)
        return None
    return value


def _parse_record(raw: str) -> dict:
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("not an object")
    return value


PARAMETER_RULES: dict[str, tuple[Any, Any, str]] = {
    "model": (str.strip, lambda v: len(v) > 0, "a model name"),
    "temperature": (float, lambda v: 0 <= v <= 2, "a number between 0 and 2"),
    "top_p": (float, lambda v: 0 <= v <= 1, "a number between 0 and 1"),
    "n": (int, lambda v: v > 0, "a positive integer"),
    "max_tokens": (int, lambda v: v > 0, "a positive integer"),
    "presence_penalty": (float, lambda v: -2 <= v <= 2, "a number between -2 and 2"),
    "frequency_penalty": (float, lambda v: -2 <= v <= 2, "a number between -2 and 2"),
    "logit_bias": (_parse_record, lambda v: True, "a JSON object"),
    "user": (str.strip, lambda v: len(v) > 0, "a non-empty string"),
}


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

class CredentialStore:
    """
    The single global API key, kept in a small YAML file.

    The environment variable named by ``llm.api_key_env`` always wins.
    """

    def __init__(self, path: str | Path = "~/.nbchat/credentials.yaml", env_var: str = "OPENAI_API_KEY") -> None:
        self.path = Path(path).expanduser()
        self.env_var = env_var

    def get(self) -> str:
        from_env = os.environ.get(self.env_var, "")
        if from_env:
            return from_env
        if not self.path.is_file():
            return ""
        with self.path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return str(data.get("api_key") or "")

    def set(self, api_key: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            yaml.safe_dump({"api_key": api_key}, f)
        os.chmod(self.path, 0o600)
