"""Load settings.yaml into typed dataclasses and resolve per-call model configs."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

ROLES = ("single", "proposer", "reviewer")
MODES = ("single", "debate")

# Fields a subject or request override may replace on a ModelConfig
_OVERRIDABLE = ("sdk", "model", "api_key", "api_key_env", "base_url", "temperature", "max_tokens")


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    temperature: float = 0.7
    max_tokens: int | None = None
    base_url: str | None = None
    timeout_sec: int | None = None
    api_key: str | None = None  # explicit key from a request override

    def resolve_api_key(self) -> str:
        if self.api_key and self.api_key.strip():
            return self.api_key.strip()
        return os.environ.get(self.api_key_env, "").strip()


@dataclass
class PromptsConfig:
    image_solve: str
    text_solve: str
    refine: str
    review_image: str
    review_text: str
    followup_initial: str
    followup_refine: str
    followup_review: str


@dataclass
class DefaultsConfig:
    mode: str
    max_iterations: int
    output_dir: Path
    stream: bool = True
    history_limit: int = 20


@dataclass
class SubjectConfig:
    mode: str | None = None
    models: dict[str, dict] = field(default_factory=dict)  # role -> partial override


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    subjects: dict[str, SubjectConfig] = field(default_factory=dict)
    available_roles: set[str] = field(default_factory=set)


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    parsed = int(value)
    return parsed if parsed > 0 else None


def _parse_mode(value, fallback: str) -> str:
    mode = str(value or "").strip().lower()
    return mode if mode in MODES else fallback


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs roles without an API key but does not raise; callers check
    available_roles before building invokers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        mode=_parse_mode(defaults_raw.get("mode"), "single"),
        max_iterations=max(1, int(defaults_raw["max_iterations"])),
        output_dir=Path(defaults_raw["output_dir"]),
        stream=bool(defaults_raw.get("stream", True)),
        history_limit=int(defaults_raw.get("history_limit", 20)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(**{f.name: str(prompts_raw[f.name]) for f in dataclasses.fields(PromptsConfig)})

    models: dict[str, ModelConfig] = {}
    available_roles: set[str] = set()

    for role, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=role,
            sdk=model_raw.get("sdk", "openai"),
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            temperature=float(model_raw.get("temperature", 0.7)),
            max_tokens=_optional_int(model_raw.get("max_tokens")),
            base_url=model_raw.get("base_url"),
            timeout_sec=_optional_int(model_raw.get("timeout_sec")),
        )
        models[role] = model_cfg

        if model_cfg.resolve_api_key():
            available_roles.add(role)
            logger.info("Model role available: %s (%s)", role, model_cfg.model)
        else:
            logger.info(
                "Model role skipped (no API key): %s, set %s in .env",
                role,
                model_cfg.api_key_env,
            )

    subjects: dict[str, SubjectConfig] = {}
    for subject, subject_raw in (raw.get("subjects") or {}).items():
        subject_raw = subject_raw or {}
        subjects[subject] = SubjectConfig(
            mode=_parse_mode(subject_raw.get("mode"), "") or None,
            models={role: dict(v or {}) for role, v in (subject_raw.get("models") or {}).items()},
        )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        subjects=subjects,
        available_roles=available_roles,
    )


def _apply_override(base: ModelConfig, override: dict | None) -> ModelConfig:
    if not override:
        return base
    changes = {}
    for key in _OVERRIDABLE:
        value = override.get(key)
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            continue
        if key == "temperature":
            value = float(value)
        elif key == "max_tokens":
            value = _optional_int(value)
        changes[key] = value
    return dataclasses.replace(base, **changes) if changes else base


def resolve_model_config(
    config: AppConfig,
    role: str,
    subject: str | None = None,
    override: dict | None = None,
) -> ModelConfig:
    """Resolve the ModelConfig for one call: request > subject > global default.

    Raises:
        KeyError: If the role has no global default in settings.
    """
    if role not in config.models:
        raise KeyError(f"No model configured for role '{role}'")
    resolved = config.models[role]
    if subject and subject in config.subjects:
        resolved = _apply_override(resolved, config.subjects[subject].models.get(role))
    resolved = _apply_override(resolved, override)
    logger.debug("Resolved %s model: %s via %s", role, resolved.model, resolved.base_url or "default endpoint")
    return resolved


def resolve_mode(config: AppConfig, mode: str, subject: str | None = None) -> str:
    """Turn a user-facing mode (single, debate, auto) into single or debate."""
    mode = (mode or "").strip().lower()
    if mode in MODES:
        return mode
    if mode != "auto":
        raise ValueError(f"Unknown mode: {mode!r}")
    subject_cfg = config.subjects.get(subject or "")
    if subject_cfg and subject_cfg.mode:
        return subject_cfg.mode
    return config.defaults.mode
