"""
Configuration loading utility for codepipe.

This module loads and validates the YAML pipeline configuration, and builds
the equivalent configuration in memory for the `index` command.
"""

import yaml
from pathlib import Path
import logging
from pydantic import ValidationError
import sys
from typing import Any, Dict, Optional

from .config_models import PipelineConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "pipeline.yaml"


def load_config(config_path: str) -> dict:
    """
    Loads and validates a YAML configuration file from the specified path.

    If the file is not found, unreadable, or fails validation, it logs a
    detailed error and terminates the program.

    Args:
        config_path (str): The path to the YAML configuration file.

    Returns:
        dict: The validated configuration, with defaults filled in.
    """
    path = Path(config_path)
    if not path.is_file():
        logger.error(f"Configuration file not found or is not a file: '{path}'")
        sys.exit(1)

    logger.debug(f"Attempting to load and validate configuration from: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
            if not config:
                logger.error(f"Configuration file is empty: '{path}'")
                sys.exit(1)

        validated = PipelineConfig.model_validate(config)

        logger.info(f"Successfully loaded and validated configuration from: '{path}'")
        return validated.model_dump()

    except (yaml.YAMLError, IOError) as e:
        logger.error(f"Error reading or parsing YAML file '{path}': {e}", exc_info=True)
        sys.exit(1)
    except ValidationError as e:
        logger.error(f"Configuration validation failed:\n{e}")
        sys.exit(1)


def default_config(
    directory: str,
    chunker: str = "syntax",
    max_chunk_size: Optional[int] = None,
    sink: str = "json",
    output: Optional[str] = None,
    batch_size: Optional[int] = None,
    workers: Optional[int] = None,
    parallel_scan: bool = False,
    show_progress: bool = True,
) -> Dict[str, Any]:
    """
    Builds a validated configuration for indexing `directory` without a file.

    Only the values that are given override the component defaults.
    """
    chunker_config = {}
    if max_chunk_size is not None:
        chunker_config["max_chunk_size"] = max_chunk_size

    embedder_config = {}
    if batch_size is not None:
        embedder_config["batch_size"] = batch_size

    sink_config = {}
    if output is not None:
        sink_config["path"] = output

    config = {
        "source": {
            "type": "local_code",
            "config": {"path": directory, "parallel": parallel_scan},
        },
        "chunker": {"type": chunker, "config": chunker_config},
        "embedder": {"type": "openai", "config": embedder_config},
        "sink": {"type": sink, "config": sink_config},
        "workers": workers,
        "show_progress": show_progress,
    }
    return PipelineConfig.model_validate(config).model_dump()
