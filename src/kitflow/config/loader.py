import json
from pathlib import Path
from typing import Any


def load_engine_config(config_path: str | None = None) -> dict[str, Any]:
    """
    Loads the engine runtime configuration.
    If no path is provided, looks for engine_config.json in the config directory.
    """
    if config_path is None:
        # Default to the file next to this script
        final_path = Path(__file__).parent / "engine_config.json"
    else:
        final_path = Path(config_path)

    with open(final_path) as f:
        data = json.load(f)
        if not isinstance(data, dict):
            raise TypeError(f"Expected dict from {final_path}, got {type(data)}")
        return data


def engine_section(config: dict[str, Any], name: str) -> dict[str, Any]:
    """Returns config["engine_parameters"][name], or {} when absent."""
    section = config.get("engine_parameters", {}).get(name, {})
    return section if isinstance(section, dict) else {}
