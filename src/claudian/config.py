import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


READ_TOOLS: Tuple[str, ...] = ("Read", "Glob", "Grep", "LS")
WRITE_TOOLS: Tuple[str, ...] = ("Edit", "MultiEdit", "Write")
BASH_TOOLS: Tuple[str, ...] = ("Bash",)
WEB_TOOLS: Tuple[str, ...] = ("WebFetch", "WebSearch")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Permissions:
    """Which tool families the agent may use without asking."""
    allow_write: bool = True
    allow_bash: bool = False
    allow_web: bool = False

    def allowed_tools(self) -> List[str]:
        tools = list(READ_TOOLS)
        if self.allow_write:
            tools.extend(WRITE_TOOLS)
        if self.allow_bash:
            tools.extend(BASH_TOOLS)
        if self.allow_web:
            tools.extend(WEB_TOOLS)
        return tools

    def disallowed_tools(self) -> List[str]:
        allowed = set(self.allowed_tools())
        return [t for t in WRITE_TOOLS + BASH_TOOLS + WEB_TOOLS if t not in allowed]

    @property
    def permission_mode(self) -> str:
        return "acceptEdits" if self.allow_write else "default"


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot handed to each run."""
    claude_bin: str = "claude"
    model: Optional[str] = None
    max_turns: Optional[int] = None
    partial_text: bool = True
    permissions: Permissions = field(default_factory=Permissions)

    def as_dict(self) -> Dict[str, object]:
        return {
            "claude_bin": self.claude_bin,
            "model": self.model,
            "max_turns": self.max_turns,
            "partial_text": self.partial_text,
            "permissions": {
                "allow_write": self.permissions.allow_write,
                "allow_bash": self.permissions.allow_bash,
                "allow_web": self.permissions.allow_web,
            },
        }


def _env_flag(env: Dict[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_int(env: Dict[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings(env: Optional[Dict[str, str]] = None) -> Settings:
    """Build a settings snapshot from the environment.

    Unset variables fall back to the defaults on ``Settings`` and
    ``Permissions``.
    """
    if env is None:
        env = dict(os.environ)
    defaults = Settings()
    permissions = Permissions(
        allow_write=_env_flag(env, "CLAUDIAN_ALLOW_WRITE", defaults.permissions.allow_write),
        allow_bash=_env_flag(env, "CLAUDIAN_ALLOW_BASH", defaults.permissions.allow_bash),
        allow_web=_env_flag(env, "CLAUDIAN_ALLOW_WEB", defaults.permissions.allow_web),
    )
    return Settings(
        claude_bin=env.get("CLAUDIAN_BIN") or defaults.claude_bin,
        model=env.get("CLAUDIAN_MODEL") or None,
        max_turns=_env_int(env, "CLAUDIAN_MAX_TURNS"),
        partial_text=_env_flag(env, "CLAUDIAN_PARTIAL_TEXT", defaults.partial_text),
        permissions=permissions,
    )


def vault_root(env: Optional[Dict[str, str]] = None) -> str:
    if env is None:
        env = dict(os.environ)
    return os.path.abspath(env.get("CLAUDIAN_VAULT") or os.getcwd())
