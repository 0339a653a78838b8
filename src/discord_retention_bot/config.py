import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

API_KEY_ENV = "DISCORD_API_KEY"
CONFIG_PATH_ENV = "CONFIGURATION_FILE_LOCATION"
DEFAULT_CONFIG_NAME = "configuration.json"
DEFAULT_DELETE_ACTION_DELAY_SECONDS = 5 * 60


class ConfigurationError(Exception):
    pass


class ChannelConfigurationEntry(BaseModel):
    """One channel to clear. Accepts both the PascalCase file keys and snake_case."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    channel_id: int = Field(alias="ChannelId")
    # Messages at least this old (in seconds) are deleted.
    message_max_age_seconds: float = Field(alias="MessageMaxAgeSeconds", ge=0)
    # Run the deletion logic without deleting anything.
    dry_run: Optional[bool] = Field(default=None, alias="DryRun")

    @property
    def effective_dry_run(self) -> bool:
        return bool(self.dry_run)


class RetentionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    discord_api_key: str = Field(default="", alias="DiscordApiKey")
    # Pause between delete steps of a channel.
    delete_action_delay_seconds: int = Field(
        default=DEFAULT_DELETE_ACTION_DELAY_SECONDS,
        alias="DeleteActionDelaySeconds",
        ge=0,
    )
    channels: List[ChannelConfigurationEntry] = Field(default_factory=list, alias="Channels")

    def channels_by_id(self) -> Dict[int, ChannelConfigurationEntry]:
        # Later entries win for duplicated channel ids.
        return {entry.channel_id: entry for entry in self.channels}


def get_config_path(explicit: Optional[str] = None) -> Path:
    raw = explicit or os.environ.get(CONFIG_PATH_ENV)
    if raw:
        return Path(raw).expanduser().resolve()
    return Path.cwd() / DEFAULT_CONFIG_NAME


def parse_config(text: str) -> RetentionConfig:
    try:
        return RetentionConfig.model_validate(json.loads(text))
    except (ValueError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def read_config_file(path: Path) -> RetentionConfig:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    return parse_config(path.read_text(encoding="utf-8"))


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except Exception as exc:
        print(f"Failed to read .env: {exc}", file=sys.stderr)
    return data


def get_env_value(key: str, env_file: Dict[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def resolve_api_key(config: RetentionConfig, config_path: Path) -> str:
    """Environment (or a .env beside the config file) wins over the file key."""
    env_file = load_env_file(config_path.parent / ".env")
    return (get_env_value(API_KEY_ENV, env_file) or config.discord_api_key or "").strip()


def describe_config(config: RetentionConfig, config_path: Path) -> List[str]:
    lines = [
        f"Config file: {config_path}",
        f"API key present: {'yes' if resolve_api_key(config, config_path) else 'no'}",
        f"Delete step delay: {config.delete_action_delay_seconds}s",
        f"Channels: {len(config.channels_by_id())}",
    ]
    for entry in config.channels_by_id().values():
        dry = " (dry run)" if entry.effective_dry_run else ""
        lines.append(f"  {entry.channel_id}: max age {entry.message_max_age_seconds:g}s{dry}")
    return lines


def find_config_problems(config: RetentionConfig) -> List[str]:
    """Problems that parse fine but are almost certainly mistakes."""
    problems: List[str] = []
    seen: Dict[int, int] = {}
    for entry in config.channels:
        seen[entry.channel_id] = seen.get(entry.channel_id, 0) + 1
        if entry.message_max_age_seconds == 0 and not entry.effective_dry_run:
            problems.append(f"channel {entry.channel_id}: max age 0 deletes every message")
    for channel_id, count in seen.items():
        if count > 1:
            problems.append(f"channel {channel_id}: listed {count} times, the last entry is used")
    if config.delete_action_delay_seconds == 0:
        problems.append("DeleteActionDelaySeconds is 0, steps will run back to back")
    return problems
