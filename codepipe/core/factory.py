"""
Component Factory for the codepipe pipeline.

This module implements the factory pattern for creating pipeline components.
It uses registries to map configuration strings (e.g., 'local_code') to
the actual component classes, so components can be swapped through
configuration alone.
"""

import logging
from ..components.sources import LocalCodeSource
from ..components.chunkers import ParagraphChunker, SyntaxChunker
from ..components.embedders import OpenAIEmbedder
from ..components.sinks import JSONFileSink, RedisSink

logger = logging.getLogger(__name__)

# A registry mapping 'type' strings to their corresponding Source classes.
SOURCE_REGISTRY = {"local_code": LocalCodeSource}

# A registry mapping 'type' strings to their corresponding Chunker classes.
CHUNKER_REGISTRY = {
    "paragraph": ParagraphChunker,
    "syntax": SyntaxChunker,
}

# A registry mapping 'type' strings to their corresponding Embedder classes.
EMBEDDER_REGISTRY = {
    "openai": OpenAIEmbedder,
}

# A registry mapping 'type' strings to their corresponding Sink classes.
SINK_REGISTRY = {"json": JSONFileSink, "redis": RedisSink}


def build_component(component_config: dict, registry: dict):
    """
    Builds a component instance from a configuration dictionary and a registry.

    This generic function takes a component's configuration, which must include
    a 'type' key, and looks up the corresponding class in the provided registry.
    It then instantiates the class with the parameters from the 'config' key.

    Args:
        component_config (dict): The component's configuration dictionary,
            expected to have 'type' and 'config' keys.
        registry (dict): The registry (e.g., SOURCE_REGISTRY) to look up the
            component class.

    Returns:
        An instance of the component class.

    Raises:
        ValueError: If the 'type' is not specified in the config or if the
            type is not found in the registry.
    """
    component_type = component_config.get("type", "")
    config = component_config.get("config") or {}

    if not component_type:
        raise ValueError("Component 'type' not specified in configuration.")

    component_class = registry.get(component_type)
    if not component_class:
        raise ValueError(f"'{component_type}' is not a valid component type.")

    shown = {k: v for k, v in config.items() if k != "api_key"}
    logger.debug(
        f"Building component '{component_class.__name__}' with config: {shown}"
    )
    return component_class(**config)
