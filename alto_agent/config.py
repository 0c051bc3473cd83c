"""
Settings for the endpoint, tools and display, with project-level overrides.

The first file found wins:
  1. <project>/.alto.conf.yml
  2. <git root>/.alto.conf.yml
  3. ~/.alto/config.yml (written with defaults when missing)

``.env`` files in ``~/.alto/`` and the project directory are read before
anything else; variables already in the environment are left alone.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .logger import get_logger

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".alto"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
PROJECT_CONFIG_NAME = ".alto.conf.yml"

REASONING_DISPLAY_MODES = {"off", "full"}

TRUE_WORDS = ("1", "true", "yes", "on")
FALSE_WORDS = ("0", "false", "no", "off")

# validator(value) -> (ok, coerced, message)
Validator = Callable[[Any], "tuple[bool, Any, str]"]


@dataclass
class ConfigFieldSpec:
    """One YAML key, the Config attribute it fills, and how to check it."""
    key: str
    field_name: str
    description: str
    value_type: str
    default: Any
    validator: Optional[Validator] = None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    if isinstance(value, bool):
        return False, 0, "Must be an integer"
    try:
        number = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if not min_val <= number <= max_val:
        return False, max(min_val, min(max_val, number)), f"Must be between {min_val} and {max_val}"
    return True, number, ""


def _validate_optional_float(value: Any, min_val: float, max_val: float) -> tuple[bool, Optional[float], str]:
    """Empty means unset, which lets the endpoint pick its own default."""
    if _blank(value):
        return True, None, ""
    if isinstance(value, bool):
        return False, None, "Must be a number"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False, None, "Must be a number"
    if not min_val <= number <= max_val:
        return False, None, f"Must be between {min_val} and {max_val}"
    return True, number, ""


def _validate_enum(value: Any, valid_values: set) -> tuple[bool, str, str]:
    choice = str(value).strip().lower()
    if choice in valid_values:
        return True, choice, ""
    return False, "", f"Must be one of: {', '.join(sorted(valid_values))}"


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    if isinstance(value, bool):
        return True, value, ""
    word = str(value).strip().lower() if isinstance(value, (str, int)) else ""
    if word in TRUE_WORDS:
        return True, True, ""
    if word in FALSE_WORDS:
        return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _validate_url(value: Any) -> tuple[bool, str, str]:
    url = str(value or "").strip().rstrip("/")
    if url.startswith(("http://", "https://")):
        return True, url, ""
    return False, "", "Must be an http:// or https:// URL"


def _validate_str(value: Any) -> tuple[bool, str, str]:
    return True, str(value), ""


def _validate_optional_str(value: Any) -> tuple[bool, Optional[str], str]:
    if _blank(value):
        return True, None, ""
    return True, str(value).strip(), ""


def _validate_log_file(value: Any) -> tuple[bool, Union[str, bool, None], str]:
    """A path, or false to turn file logging off; empty keeps the default file."""
    if value is False:
        return True, False, ""
    if value is True or _blank(value):
        return True, None, ""
    path = str(value).strip()
    if path.lower() in FALSE_WORDS:
        return True, False, ""
    return True, path, ""


def _field(key: str, description: str, value_type: str, default: Any,
           validator: Validator) -> ConfigFieldSpec:
    return ConfigFieldSpec(key, key.replace("-", "_"), description, value_type, default, validator)


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {spec.key: spec for spec in (
    _field("base-url", "OpenAI-compatible endpoint base URL",
           "str", "http://localhost:8080/v1", _validate_url),
    _field("model", "Model name sent with every request",
           "str", "local-model", _validate_str),
    _field("api-key", "API key (prefer api-key-env)",
           "str", None, _validate_optional_str),
    _field("api-key-env", "Environment variable holding the API key",
           "str", "ALTO_API_KEY", _validate_optional_str),
    _field("temperature", "Sampling temperature (unset: endpoint default)",
           "float", None, lambda v: _validate_optional_float(v, 0.0, 2.0)),
    _field("request-timeout", "Total time allowed for one model request, in seconds",
           "int", 600, lambda v: _validate_int_range(v, 10, 3600)),
    _field("command-timeout", "Shell command timeout in seconds",
           "int", 120, lambda v: _validate_int_range(v, 1, 3600)),
    _field("auto-confirm", "Run commands that require approval without prompting",
           "bool", False, _validate_bool),
    _field("max-iterations", "Maximum model turns per user message",
           "int", 30, lambda v: _validate_int_range(v, 1, 100)),
    _field("stop-on-tool-error", "End the round when a tool call fails",
           "bool", True, _validate_bool),
    _field("reasoning-display", "Thinking output: full or off",
           "str", "full", lambda v: _validate_enum(v, REASONING_DISPLAY_MODES)),
    _field("show-stats", "Print token and throughput stats after each turn",
           "bool", True, _validate_bool),
    _field("use-unicode", "Unicode icons (false: ASCII fallback)",
           "bool", True, _validate_bool),
    _field("verbose", "Info-level logging on the terminal",
           "bool", False, _validate_bool),
    _field("log-file", "Log file path (false disables file logging)",
           "str", None, _validate_log_file),
    _field("system-prompt-file", "File whose text replaces the built-in system prompt",
           "str", None, _validate_optional_str),
)}

ENV_OVERRIDES = {
    "ALTO_BASE_URL": "base-url",
    "ALTO_MODEL": "model",
    "ALTO_AUTO_CONFIRM": "auto-confirm",
    "ALTO_VERBOSE": "verbose",
}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """Check ``value`` for ``key``; returns ``(ok, coerced, message)``."""
    spec = CONFIG_FIELDS.get(key)
    if spec is None:
        return False, value, f"Unknown configuration key: {key}"
    return spec.validator(value)


@dataclass
class Config:
    base_url: str = "http://localhost:8080/v1"
    model: str = "local-model"
    api_key: Optional[str] = None
    api_key_env: Optional[str] = "ALTO_API_KEY"
    temperature: Optional[float] = None
    request_timeout: int = 600
    command_timeout: int = 120
    auto_confirm: bool = False
    max_iterations: int = 30
    stop_on_tool_error: bool = True
    reasoning_display: str = "full"
    show_stats: bool = True
    use_unicode: bool = True
    verbose: bool = False
    log_file: Union[str, bool, None] = None
    system_prompt_file: Optional[str] = None
    project_root: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        project_path = Path(project_dir).resolve()

        for env_path in (CONFIG_DIR / ".env", project_path / ".env"):
            if env_path.exists():
                load_dotenv(env_path, override=False)

        source = next((path for path in cls._candidate_files(project_path) if path.exists()), None)
        if source is None:
            config._config_source = str(CONFIG_FILE)
            config.save()
        else:
            config._load_yaml(source)
            config._config_source = str(source)

        config._apply_env()
        config.project_root = str(project_path)
        return config

    @classmethod
    def _candidate_files(cls, project_path: Path) -> list:
        files = [project_path / PROJECT_CONFIG_NAME]
        git_root = cls._find_git_root(project_path)
        if git_root and git_root != project_path:
            files.append(git_root / PROJECT_CONFIG_NAME)
        files.append(CONFIG_FILE)
        return files

    def _load_yaml(self, filepath: Path):
        try:
            data = yaml.safe_load(filepath.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Ignoring unreadable config %s: %s", filepath, e)
            return
        if not isinstance(data, dict):
            _log.warning("Ignoring config %s: top level must be a mapping", filepath)
            return

        for key, value in data.items():
            spec = CONFIG_FIELDS.get(key)
            if spec is None:
                _log.warning("Unknown config key in %s: %s", filepath, key)
                continue
            ok, coerced, error = spec.validator(value)
            if ok:
                setattr(self, spec.field_name, coerced)
            else:
                _log.warning("Invalid %s in %s (%s); using default", key, filepath, error)

    def _apply_env(self):
        for env_var, key in ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if not raw:
                continue
            ok, coerced, error = validate_config_value(key, raw)
            if ok:
                setattr(self, CONFIG_FIELDS[key].field_name, coerced)
            else:
                _log.warning("Ignoring %s: %s", env_var, error)

    def save(self, filepath: Optional[str] = None):
        if filepath:
            target = Path(filepath)
        else:
            target = Path(self._config_source) if self._config_source else CONFIG_FILE
        target.parent.mkdir(parents=True, exist_ok=True)

        data = {}
        for key, spec in CONFIG_FIELDS.items():
            value = getattr(self, spec.field_name, spec.default)
            if value is not None:
                data[key] = value

        with open(target, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        self._config_source = str(target)

    def set_config_value(self, key: str, value: Any) -> tuple[bool, str]:
        """Validate, assign and persist one key; returns ``(ok, message)``."""
        ok, coerced, error = validate_config_value(key, value)
        if not ok:
            return False, error
        setattr(self, CONFIG_FIELDS[key].field_name, coerced)
        self.save()
        return True, ""

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env) or None
        return None

    def load_system_prompt(self, default: str) -> str:
        """Text of ``system-prompt-file`` if set and readable, else ``default``."""
        if not self.system_prompt_file:
            return default
        path = Path(self.system_prompt_file).expanduser()
        if not path.is_absolute() and self.project_root:
            path = Path(self.project_root) / path
        try:
            text = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            _log.warning("Cannot read system prompt file %s: %s", path, e)
            return default
        return text or default

    def summary(self) -> dict:
        from .rendering import get_icon

        def on_off(flag: bool) -> str:
            return "ON" if flag else "OFF"

        key_state = get_icon("✓") if self.resolve_api_key() else f"{get_icon('✗')} not set"
        return {
            "Endpoint": self.base_url,
            "Model": self.model,
            "API key": key_state,
            "Temperature": "(endpoint default)" if self.temperature is None else self.temperature,
            "Request timeout": f"{self.request_timeout}s",
            "Command timeout": f"{self.command_timeout}s",
            "Auto-confirm": on_off(self.auto_confirm),
            "Max iterations": self.max_iterations,
            "Stop on tool error": on_off(self.stop_on_tool_error),
            "Thinking display": self.reasoning_display,
            "Stats": on_off(self.show_stats),
            "System prompt": self.system_prompt_file or "(built-in)",
            "Project": self.project_root,
            "Config": self._config_source or "(defaults)",
        }

    @staticmethod
    def _find_git_root(path: Path) -> Optional[Path]:
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return candidate
        return None
