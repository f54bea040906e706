"""Configuration export/import utilities"""
from pathlib import Path

import yaml

from ..core.config import TurnConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)


def export_config(
    config: TurnConfig,
    output_path: Path | None = None,
    include_secrets: bool = False,
) -> Path:
    """
    Export configuration to YAML file.

    Args:
        config: Configuration to export
        output_path: Where to save (default: .turnstream/config.yaml)
        include_secrets: Whether to include the upstream API key (default: False)

    Returns:
        Path to exported config file
    """
    if output_path is None:
        output_path = Path(".turnstream/config.yaml")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    exclude_fields = set() if include_secrets else set(TurnConfig.SECRET_FIELDS)
    config_dict = config.model_dump(exclude=exclude_fields, exclude_none=True, mode="json")

    with output_path.open("w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=True, indent=2)

    logger.info("config_exported", path=str(output_path), include_secrets=include_secrets)
    return output_path


def import_config(config_path: Path) -> TurnConfig:
    """
    Import configuration from YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If a value fails validation
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open() as f:
        config_dict = yaml.safe_load(f) or {}

    logger.info("config_loaded", path=str(config_path))
    return TurnConfig(**config_dict)
