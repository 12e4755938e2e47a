"""
I/O utilities for configuration files and analysis reports.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def load_config(config_path: Union[str, Path]) -> Dict:
    """
    Loads a configuration mapping from a YAML file.

    Args:
        config_path (str | Path): Path to the YAML configuration file.

    Returns:
        Dict: The loaded configuration (empty for an empty file).

    Raises:
        ValueError: If the file does not contain a YAML mapping.
    """
    with open(config_path, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Config file {config_path} is not valid YAML: {exc}") from exc
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(
            f"Config file {config_path} must contain a mapping, got {type(config).__name__}."
        )
    return config


def load_optional_config(config_path: Optional[Path]) -> Dict:
    """Like :func:`load_config`, but a missing file yields ``{}``."""
    if config_path is None or not Path(config_path).exists():
        return {}
    return load_config(config_path)


def save_report(report: BaseModel, output_path: Union[str, Path]) -> Path:
    """
    Writes a pydantic report to disk as indented JSON.

    Args:
        report (BaseModel): Report to serialize.
        output_path (str | Path): Destination file; parent folders are created.

    Returns:
        Path: The written file path.
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(report.model_dump(mode="json"), f, indent=2)
    logger.info(f"Report saved to: {path}")
    return path
