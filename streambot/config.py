"""Configuration management for streambot.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
defaults for the Twitch connection, channel list, permission seeds,
notification sounds, the song queue and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger("streambot.bot")

DEFAULT_NOTIFICATIONS = {
    "!raid": "raid.ogg",
    "!follow": "follow.ogg",
    "!host": "host.ogg",
}

DEFAULT_WELCOME_SOUNDS = [f"welcome{i}.ogg" for i in range(5)]

DEFAULT_PLAYER = [
    "mpv", "{file}", "--ao=jack", "--jack-port=notification", "--really-quiet",
]

BUCKET_MODES = ("legacy", "even")


class Config:
    """Central configuration manager for streambot.

    Loads settings.yaml and .env from the config directory. Read-only
    after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = config_dir

        env_file = config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str) -> dict:
        section = self.settings.get(name, {})
        return section if isinstance(section, dict) else {}

    def _string_list(self, key: str) -> List[str]:
        values = self.settings.get(key, [])
        if not isinstance(values, list):
            logger.error("config_invalid_type", key=key, type=type(values).__name__)
            return []
        return [str(v) for v in values]

    def validate(self):
        """Validate critical settings at startup.

        Logs warnings/errors but does not raise. A missing token is
        reported again by the session when it tries to log in.
        """
        if not self.twitch_name:
            logger.error("config_missing", key="twitch.name", env="TWITCH_NAME")
        if not self.twitch_token:
            logger.error("config_missing", key="TWITCH_TOKEN")
        if not self.channels:
            logger.warning("no_channels_configured", msg="Bot will not join any channel")
        if not self.vips:
            logger.warning("no_vips_configured", msg="No chatter can trigger commands")
        if self.welcome_buckets not in BUCKET_MODES:
            logger.error(
                "config_invalid_value",
                key="welcome.buckets",
                value=self.welcome_buckets,
                valid=",".join(BUCKET_MODES),
            )
        if len(self.welcome_sounds) != 5:
            logger.error(
                "config_invalid_value",
                key="welcome.sounds",
                value=len(self.welcome_sounds),
                valid="exactly 5 files",
            )

    # --- Twitch connection ---

    @property
    def twitch_name(self) -> str:
        """Bot login name. Env var TWITCH_NAME takes precedence."""
        return os.environ.get("TWITCH_NAME") or self._section("twitch").get("name", "")

    @property
    def twitch_token(self) -> str:
        """OAuth token, read from the environment only (TWITCH_TOKEN)."""
        return os.environ.get("TWITCH_TOKEN", "")

    @property
    def twitch_server(self) -> str:
        return self._section("twitch").get("server", "irc.chat.twitch.tv")

    @property
    def twitch_port(self) -> int:
        """IRC port (default 6697, TLS)."""
        return int(self._section("twitch").get("port", 6697))

    @property
    def twitch_tls(self) -> bool:
        return bool(self._section("twitch").get("tls", True))

    @property
    def join_timeout(self) -> float:
        """Seconds to wait for a JOIN confirmation (default 10)."""
        return float(self._section("twitch").get("join_timeout", 10))

    @property
    def send_rate_limit(self) -> int:
        """Max outbound messages per window (default 20, Twitch's normal-user limit)."""
        limits = self._section("twitch").get("rate_limit", {}) or {}
        return int(limits.get("messages", 20))

    @property
    def send_rate_window(self) -> float:
        """Rate limit window in seconds (default 30)."""
        limits = self._section("twitch").get("rate_limit", {}) or {}
        return float(limits.get("window_seconds", 30))

    @property
    def channels(self) -> List[str]:
        """Ordered channel list. Env var TWITCH_CHANNEL (comma-separated) takes precedence."""
        env = os.environ.get("TWITCH_CHANNEL")
        if env:
            return [c.strip() for c in env.split(",") if c.strip()]
        return self._string_list("channels")

    # --- Membership ---

    @property
    def vips(self) -> List[str]:
        """Identities allowed to trigger commands."""
        return self._string_list("vips")

    @property
    def known_chatters(self) -> List[str]:
        """Identities that never get a welcome sound."""
        return self._string_list("known_chatters")

    # --- Audio ---

    @property
    def audio_dir(self) -> Path:
        configured = self._section("audio").get("dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "audio"

    @property
    def player_command(self) -> List[str]:
        """Player argv; ``{file}`` is replaced with the sound path."""
        configured = self._section("audio").get("player")
        if isinstance(configured, list) and configured:
            return [str(part) for part in configured]
        return list(DEFAULT_PLAYER)

    @property
    def notifications(self) -> Dict[str, Path]:
        """Command name -> sound file for the no-argument notification commands."""
        configured = self._section("audio").get("notifications")
        mapping = configured if isinstance(configured, dict) else DEFAULT_NOTIFICATIONS
        return {str(cmd): self.audio_dir / str(f) for cmd, f in mapping.items()}

    @property
    def welcome_sounds(self) -> List[Path]:
        configured = self._section("welcome").get("sounds")
        files = configured if isinstance(configured, list) else DEFAULT_WELCOME_SOUNDS
        return [self.audio_dir / str(f) for f in files]

    @property
    def welcome_buckets(self) -> str:
        """``legacy`` (21/20/20/20/19 split, default) or ``even`` quintiles."""
        return str(self._section("welcome").get("buckets", "legacy")).lower()

    # --- Song queue ---

    @property
    def queue_file(self) -> Path:
        configured = self._section("song_queue").get("file")
        if configured:
            return Path(configured).expanduser()
        return Path("queue.txt")

    @property
    def queue_helper_command(self) -> List[str]:
        """Optional argv spawned once at startup to consume the queue file."""
        configured = self._section("song_queue").get("helper_command")
        if isinstance(configured, list):
            return [str(part) for part in configured]
        if isinstance(configured, str) and configured:
            return [configured]
        return []

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO) for the console and streambot.log."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"session": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_chat_transcript(self) -> bool:
        """Write chat lines to logs/chat.log (default on)."""
        return bool(self._section("logging").get("chat_transcript", True))

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        return self._section("logging").get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
