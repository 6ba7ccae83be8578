"""Service configuration and the factories that turn it into an engine.

Precedence, lowest first: _CONFIG_DEFAULTS, the JSON config file
(NEARFIELD_CONFIG or an explicit path), environment variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from nearfield.clues import ClueSink
from nearfield.content import DEMO_BRIEFS, DEMO_SCRIPTS
from nearfield.engine import AdvanceEngine
from nearfield.llm import HttpLLM
from nearfield.providers import CannedSceneProvider, GenerativeSceneProvider, SceneDataProvider

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "provider": "canned",
    "provider_timeout": 30.0,
    "llm": {
        "provider_url": "http://localhost:5001",
        "api_key": "",
        "provider_format": "koboldcpp",
        "model": "",
        "timeout": 60.0,
    },
}

# env var -> (section or None, key, cast)
_ENV_OVERRIDES: dict[str, tuple[str | None, str, type]] = {
    "NEARFIELD_PROVIDER": (None, "provider", str),
    "NEARFIELD_PROVIDER_TIMEOUT": (None, "provider_timeout", float),
    "LLM_PROVIDER_URL": ("llm", "provider_url", str),
    "LLM_API_KEY": ("llm", "api_key", str),
    "LLM_PROVIDER_FORMAT": ("llm", "provider_format", str),
    "LLM_MODEL": ("llm", "model", str),
}

PROVIDERS = ("canned", "generative")


def _config_path(path: Path | None) -> Path | None:
    if path is not None:
        return path
    env = os.getenv("NEARFIELD_CONFIG", "")
    return Path(env) if env else None


def get_config(path: Path | None = None) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env overrides."""
    config: dict[str, Any] = json.loads(json.dumps(_CONFIG_DEFAULTS))
    resolved = _config_path(path)
    if resolved is not None and resolved.is_file():
        stored = json.loads(resolved.read_text())
        if "provider" in stored:
            config["provider"] = stored["provider"]
        if "provider_timeout" in stored:
            config["provider_timeout"] = float(stored["provider_timeout"])
        if isinstance(stored.get("llm"), dict):
            config["llm"].update(stored["llm"])
    elif resolved is not None:
        logger.warning("Config file %s not found, using defaults", resolved)

    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        value = os.getenv(var)
        if not value:
            continue
        target = config[section] if section else config
        target[key] = cast(value)

    if config["provider"] not in PROVIDERS:
        raise ValueError(f"Unknown provider {config['provider']!r}, expected one of {PROVIDERS}")
    return config


def create_provider(config: dict[str, Any]) -> SceneDataProvider:
    if config["provider"] == "generative":
        llm_cfg = config["llm"]
        llm = HttpLLM(
            provider_url=llm_cfg["provider_url"],
            api_key=llm_cfg.get("api_key", ""),
            provider_format=llm_cfg.get("provider_format", "koboldcpp"),
            model=llm_cfg.get("model", ""),
            timeout=float(llm_cfg.get("timeout", 60.0)),
        )
        logger.info("Using generative provider at %s", llm_cfg["provider_url"])
        return GenerativeSceneProvider(llm, DEMO_BRIEFS)
    logger.info("Using canned provider (%d scenes)", len(DEMO_SCRIPTS))
    return CannedSceneProvider(DEMO_SCRIPTS)


def create_engine(config: dict[str, Any], clue_sink: ClueSink | None = None) -> AdvanceEngine:
    return AdvanceEngine(
        create_provider(config),
        clue_sink=clue_sink,
        provider_timeout=float(config["provider_timeout"]),
    )
