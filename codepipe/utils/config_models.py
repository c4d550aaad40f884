from pydantic import BaseModel, Field
from typing import Dict, Any, Optional


class ComponentConfig(BaseModel):
    """A model for a single component's configuration (source, chunker, etc.)"""

    type: str
    config: Dict[str, Any] = {}


class PipelineConfig(BaseModel):
    """The top-level model for the entire pipeline.yaml configuration."""

    source: ComponentConfig
    chunker: ComponentConfig = ComponentConfig(type="syntax")
    embedder: ComponentConfig = ComponentConfig(type="openai")
    sink: ComponentConfig = ComponentConfig(type="json")
    workers: Optional[int] = Field(default=None, ge=1)
    worker_multiplier: int = Field(default=4, ge=1)
    show_progress: bool = True
    error_preview: int = Field(default=10, ge=0)
