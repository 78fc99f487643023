import yaml
from pathlib import Path
from pydantic import ValidationError
from vtq.domain.errors import FatalStartupError
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FatalStartupError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # A bare string is accepted for a single watch root
    paths = data.get("paths")
    if isinstance(paths, dict) and isinstance(paths.get("watch_roots"), str):
        paths["watch_roots"] = [paths["watch_roots"]]

    try:
        return AppConfig(**data)
    except ValidationError as exc:
        raise FatalStartupError(f"Invalid config {config_path}: {exc}") from exc
