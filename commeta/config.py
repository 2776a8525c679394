"""
Configuration and logging setup.

All settings come from environment variables and are read once into a frozen
Settings object. Components receive the Settings instance they need instead
of reading the environment themselves, so tests can build their own.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# WhatsApp and Telegram both cap a message at roughly 4096 characters
MAX_MESSAGE_LENGTH = 4000
HISTORY_LIMIT = 20


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logging.getLogger("config").warning(f"Invalid integer for {name}, using {default}")
        return default


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the engine and its channels."""
    data_dir: Path = Path("./data")
    repos_dir: Path = Path("./repos")
    encryption_secret: str = "please_change_me"

    # AI collaborator
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    ai_enabled: bool = False
    ai_system_prompt: str = ""

    # Bot
    bot_name: str = "Commeta"
    allowed_identities: Tuple[str, ...] = field(default_factory=tuple)

    # External tools
    git_command: str = "git"
    agent_command: str = "janito"
    deploy_command: str = "vercel"
    tool_timeout: int = 600
    deploy_timeout: int = 300
    keepalive_interval: int = 30

    # GitHub API
    github_api_url: str = "https://api.github.com"
    github_timeout: float = 10.0

    # Channels
    telegram_bot_token: str = ""
    port: int = 8081

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "/var/log/commeta.log"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            data_dir=Path(os.getenv("COMMETA_DATA_DIR", "./data")),
            repos_dir=Path(os.getenv("COMMETA_REPOS_DIR", "./repos")),
            encryption_secret=os.getenv("ENCRYPTION_SECRET", "please_change_me"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            transcription_model=os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1"),
            ai_enabled=_env_bool("AI_ENABLED"),
            ai_system_prompt=os.getenv("AI_SYSTEM_PROMPT", ""),
            bot_name=os.getenv("BOT_NAME", "Commeta"),
            allowed_identities=_env_list("ALLOWED_IDENTITIES"),
            git_command=os.getenv("GIT_COMMAND", "git"),
            agent_command=os.getenv("AGENT_COMMAND", "janito"),
            deploy_command=os.getenv("DEPLOY_COMMAND", "vercel"),
            tool_timeout=_env_int("TOOL_TIMEOUT", 600),
            deploy_timeout=_env_int("DEPLOY_TIMEOUT", 300),
            keepalive_interval=_env_int("KEEPALIVE_INTERVAL", 30),
            github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            port=_env_int("PORT", 8081),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("COMMETA_LOG", "/var/log/commeta.log") or None,
        )

    @property
    def registry_file(self) -> Path:
        return self.data_dir / "registry.json"

    @property
    def credentials_file(self) -> Path:
        return self.data_dir / "credentials.json"

    def with_overrides(self, **kwargs) -> "Settings":
        """Return a copy with some fields replaced."""
        return replace(self, **kwargs)

    def is_identity_allowed(self, identity: str) -> bool:
        """Empty allow-list means everyone may talk to the bot."""
        if not self.allowed_identities:
            return True
        return identity in self.allowed_identities


# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
def configure_logging(settings: Settings) -> None:
    """Attach console and (when writable) file handlers to the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if any(getattr(h, "_commeta", False) for h in root.handlers):
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._commeta = True
    root.addHandler(console_handler)

    if settings.log_file:
        try:
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(formatter)
            file_handler._commeta = True
            root.addHandler(file_handler)
        except (PermissionError, FileNotFoundError):
            pass

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
