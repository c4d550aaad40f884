"""
Command-Line Interface for codepipe.
"""

import typer
import logging
from pathlib import Path
from typing import Optional
from typing_extensions import Annotated
from dotenv import set_key

from .core.errors import CodePipeError, EmbeddingError
from .core.pipeline import run_pipeline, index_directory
from .core.factory import (
    SOURCE_REGISTRY,
    SINK_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    build_component,
)
from .components.embedders import OpenAIEmbeddingProvider
from .utils.config import load_config, DEFAULT_CONFIG_PATH


logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Index a codebase into chunk embeddings.")

DEFAULT_YAML_CONTENT = """# Default codepipe Pipeline Configuration
source:
  type: local_code
  config:
    path: .
    parallel: false

chunker:
  type: syntax
  config:
    max_chunk_size: 8000

embedder:
  type: openai
  config:
    model_name: "text-embedding-3-small"
    batch_size: 20
    requests_per_minute: 3000
    max_concurrent: 5
    timeout: 30

sink:
  type: json
  config:
    path: embeddings.json

show_progress: true
error_preview: 10
"""


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Runs `index .` when no command is given."""
    if ctx.invoked_subcommand is None:
        _index(".")


@app.command()
def index(
    directory: Annotated[
        str, typer.Argument(help="Directory of the codebase to index.")
    ] = ".",
    output: str = typer.Option(
        "embeddings.json", "--output", "-o", help="JSON file to write."
    ),
    sink: str = typer.Option("json", "--sink", help="Sink type (json or redis)."),
    chunker: str = typer.Option(
        "syntax", "--chunker", help="Chunker type (syntax or paragraph)."
    ),
    max_chunk_size: int = typer.Option(
        8000, "--max-chunk-size", min=1, help="Maximum chunk size in characters."
    ),
    batch_size: int = typer.Option(
        20, "--batch-size", min=1, help="Texts per embedding request."
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", min=1, help="Worker threads (default: CPUs x 4)."
    ),
    parallel_scan: bool = typer.Option(
        False, "--parallel-scan", help="Walk subdirectories concurrently."
    ),
    no_progress: bool = typer.Option(
        False, "--no-progress", help="Hide the progress bar."
    ),
):
    """Indexes a codebase directory."""
    _index(
        directory,
        chunker=chunker,
        max_chunk_size=max_chunk_size,
        sink=sink,
        output=output if sink == "json" else None,
        batch_size=batch_size,
        workers=workers,
        parallel_scan=parallel_scan,
        show_progress=not no_progress,
    )


def _index(directory: str, **overrides):
    try:
        summary = index_directory(directory, **overrides)
    except (CodePipeError, ValueError) as e:
        logger.error(f"Indexing failed: {e}")
        raise typer.Exit(code=1)

    print(
        f"\nSuccessfully stored {len(summary.records)} code chunks "
        f"({len(summary.errors)} errors) in {summary.elapsed:.2f}s"
    )


@app.command()
def run(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "-c",
        help="Path to the pipeline's YAML configuration file.",
    )
):
    """Runs the indexing pipeline from a YAML configuration."""
    try:
        summary = run_pipeline(config_path=config_path)
    except (CodePipeError, ValueError) as e:
        logger.error(f"Pipeline failed: {e}")
        raise typer.Exit(code=1)

    print(
        f"\nSuccessfully stored {len(summary.records)} code chunks "
        f"({len(summary.errors)} errors) in {summary.elapsed:.2f}s"
    )


@app.command()
def init():
    """Writes a default pipeline.yaml in the current directory."""
    logger.info("Initializing new codepipe project...")
    config_file = Path(DEFAULT_CONFIG_PATH)
    if config_file.exists():
        logger.warning(f"'{DEFAULT_CONFIG_PATH}' already exists.")
    else:
        config_file.write_text(DEFAULT_YAML_CONTENT.strip() + "\n")
        logger.info(f"Created default '{DEFAULT_CONFIG_PATH}'.")

    logger.info("Project initialized.")


@app.command(name="list-components")
def list_components():
    """Lists all available components."""
    logger.info("Listing available components...")

    def print_registry(title, registry):
        print(f"\n--- {title} ---")
        for name in sorted(registry.keys()):
            print(f"  - {name}")

    print_registry("Sources", SOURCE_REGISTRY)
    print_registry("Chunkers", CHUNKER_REGISTRY)
    print_registry("Embedders", EMBEDDER_REGISTRY)
    print_registry("Sinks", SINK_REGISTRY)


@app.command(name="test-connection")
def test_connection(
    component: Annotated[
        str, typer.Argument(help="Component to test (source, embedder or sink)")
    ],
    config_path: str = typer.Option(DEFAULT_CONFIG_PATH, "-c", help="Config path."),
):
    """Tests the connection for a specified component."""
    logger.info(f"Testing connection for '{component}'...")
    registries = {
        "source": SOURCE_REGISTRY,
        "embedder": EMBEDDER_REGISTRY,
        "sink": SINK_REGISTRY,
    }
    if component not in registries:
        logger.error(f"Unknown component: '{component}'")
        raise typer.Exit(code=1)

    config = load_config(config_path)
    try:
        comp_obj = build_component(config[component], registries[component])
        comp_obj.test_connection()
    except Exception as e:
        logger.error(f"Connection test failed: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.command(name="set-api-key")
def set_api_key(
    env_file: str = typer.Option(".env", "--env-file", help="File to store the key in."),
    attempts: int = typer.Option(3, "--attempts", min=1, help="Prompts before giving up."),
):
    """Prompts for an OpenAI API key, validates it, and saves it to .env."""
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            print(f"Attempt {attempt} of {attempts} to provide a valid API key.")
        api_key = typer.prompt("Please enter your OpenAI API key", hide_input=True).strip()
        if not api_key.startswith("sk-"):
            logger.warning("OpenAI API keys typically start with 'sk-'. Validating anyway.")

        logger.info("Validating OpenAI API key...")
        try:
            OpenAIEmbeddingProvider(api_key=api_key, timeout=10).embed(["test"])
        except EmbeddingError as e:
            logger.error(f"Invalid API key: {e}")
            continue

        Path(env_file).touch(exist_ok=True)
        set_key(env_file, "OPENAI_API_KEY", api_key)
        logger.info(f"API key validated and saved to '{env_file}'.")
        return

    logger.error(f"Failed to obtain a valid OpenAI API key after {attempts} attempts.")
    raise typer.Exit(code=1)

