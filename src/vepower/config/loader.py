"""Configuration loading: bundled defaults, YAML files and dotted overrides."""

from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from .schema import Config

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_config(yaml_path: str = None, overrides: Dict[str, Any] = None) -> Config:
    """
    Load configuration from YAML file and apply overrides.

    Args:
        yaml_path: Path to YAML file (defaults to defaults.yaml)
        overrides: Dot-notation values, e.g. {'escrow.max_sync_epochs': 5}

    Returns:
        Validated Config

    Raises:
        KeyError: If an override names an unknown setting
        pydantic.ValidationError: If the merged values break the schema
    """
    with open(yaml_path or DEFAULTS_PATH, 'r') as f:
        data = yaml.safe_load(f) or {}

    for path, value in (overrides or {}).items():
        set_dotted(data, path, value)

    return Config.from_dict(data)


def set_dotted(data: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dot-notation key in raw config data, checking it against the schema."""
    parts = path.split('.')
    model = Config
    node = data
    for i, part in enumerate(parts):
        fields = getattr(model, 'model_fields', {})
        if part not in fields:
            raise KeyError(f"Unknown config setting {path!r}")
        if i == len(parts) - 1:
            node[part] = value
        else:
            if node.get(part) is None:
                node[part] = {}
            node = node[part]
            model = fields[part].annotation


def parse_override(text: str) -> Tuple[str, Any]:
    """
    Parse a KEY=VALUE command line override.

    The value is read as YAML, so numbers, booleans, null and lists keep
    their types.
    """
    key, sep, raw = text.partition('=')
    if not sep or not key:
        raise ValueError(f"Override {text!r} is not of the form KEY=VALUE")
    return key.strip(), yaml.safe_load(raw)
