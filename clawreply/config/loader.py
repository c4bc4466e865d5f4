"""Configuration loading utilities for clawreply."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from clawreply.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".clawreply" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            data = _migrate_config(data)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using default configuration")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    # Convert to camelCase format
    data = config.model_dump()
    data = convert_to_camel(data)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _migrate_config(data: dict) -> dict:
    """Migrate old config formats to current."""
    if not isinstance(data, dict):
        return {}

    # Move top-level whatsapp/telegram → channels.*
    channels = data.get("channels")
    if not isinstance(channels, dict):
        channels = {}
        data["channels"] = channels
    for name in ("whatsapp", "telegram"):
        legacy = data.pop(name, None)
        if isinstance(legacy, dict) and name not in channels:
            channels[name] = legacy

    # agent.contextWindow → agent.contextTokens
    agent = data.get("agent")
    if isinstance(agent, dict):
        if "contextWindow" in agent and "contextTokens" not in agent:
            agent["contextTokens"] = agent.pop("contextWindow")
        if "thinkingDefault" in agent and "thinking" not in agent:
            agent["thinking"] = agent.pop("thinkingDefault")

    # session.sendPolicy: "allow" | "deny" shorthand → {"default": ...}
    session = data.get("session")
    if isinstance(session, dict):
        send_policy = session.get("sendPolicy")
        if isinstance(send_policy, str):
            session["sendPolicy"] = {"default": send_policy.strip().lower(), "rules": []}
        elif isinstance(send_policy, dict):
            send_policy.setdefault("rules", [])
        if "groupActivation" not in session:
            session["groupActivation"] = "mention"

    commands = data.setdefault("commands", {})
    if isinstance(commands, dict):
        commands.setdefault("compactionWaitTimeoutMs", 15_000)
        commands.setdefault("failCompactionOnRunTimeout", False)
        commands.setdefault("mentionPatterns", [])
    return data


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
