"""Command line interface for Plunk Indexer."""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config, ConfigManager
from .errors import MigrationAbortedError
from .progress.progress_display import MigrationProgressDisplay
from .services.elasticsearch import ElasticsearchClient
from .services.legacy_source import LegacyPlunkSource
from .services.migration_checkpoint import MigrationCheckpoint
from .services.migration_pipeline import MigrationPipeline
from .services.package_scanner import PackageScanner
from .services.plunk_transformer import PlunkTransformer
from .services.revision_replayer import RevisionReplayer
from .storage.bloom_filter import BloomFilter
from .storage.object_store import DedupObjectStore, SQLiteObjectStore
from .utils.exception_logger import ExceptionLogger

logger = logging.getLogger(__name__)

console = Console()


def _load_config(ctx) -> Config:
    config_manager: ConfigManager = ctx.obj["config_manager"]
    try:
        return config_manager.load()
    except ValueError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)


def build_object_store(config: Config) -> DedupObjectStore:
    """Object store shared by every record of one run."""
    return DedupObjectStore(
        SQLiteObjectStore(config.objects.path),
        BloomFilter(config.objects.bloom_bits, config.objects.bloom_hashes),
    )


def build_pipeline(
    config: Config,
    source: LegacyPlunkSource,
    sink: ElasticsearchClient,
    object_store: DedupObjectStore,
    display: Optional[MigrationProgressDisplay] = None,
) -> MigrationPipeline:
    """Wire the replayer, scanner, source, sink and checkpoint together."""
    transformer = PlunkTransformer(
        RevisionReplayer(object_store, author_domain=config.objects.author_domain),
        PackageScanner(),
    )
    return MigrationPipeline(
        source=source,
        transformer=transformer,
        sink=sink,
        checkpoint=MigrationCheckpoint(config.pipeline.checkpoint_file),
        batch_size=config.pipeline.batch_size,
        checkpoint_interval=config.pipeline.checkpoint_interval,
        progress_callback=display.update if display else None,
    )


@click.group(invoke_without_command=True)
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="plunk-indexer")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Migrate legacy plunks into a search index.

    \b
    Each plunk's revision history is replayed into a linear chain of
    git-compatible commits stored in a local object database, and the
    migrated documents are bulk-indexed into Elasticsearch. Runs are
    checkpointed: rerunning 'migrate' resumes where the last run stopped.

    \b
    GETTING STARTED:
      1. plunk-indexer init           # Write .plunk-indexer/config.json
      2. plunk-indexer setup-index    # Create the destination index
      3. plunk-indexer migrate        # Migrate (resumes from checkpoint)

    \b
    EXAMPLES:
      MONGO_URL=mongodb://db/plunker plunk-indexer migrate
      plunk-indexer migrate --id abc123    # Re-migrate one plunk
      plunk-indexer status                 # Show checkpoint
      plunk-indexer reset                  # Start over on next run
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("pymongo").setLevel(logging.WARNING)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    else:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack()


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.option("--mongo-url", help="Legacy MongoDB URL")
@click.option("--es-host", help="Elasticsearch host (e.g. http://localhost:9200)")
@click.option("--index-name", help="Destination index name")
@click.option("--batch-size", type=int, help="Records per bulk write")
@click.pass_context
def init(
    ctx,
    force: bool,
    mongo_url: Optional[str],
    es_host: Optional[str],
    index_name: Optional[str],
    batch_size: Optional[int],
):
    """Create .plunk-indexer/config.json with defaults."""
    config_manager: ConfigManager = ctx.obj["config_manager"]

    if config_manager.config_path.exists() and not force:
        console.print(
            f"❌ Configuration already exists at {config_manager.config_path} "
            "(use --force to overwrite)",
            style="red",
        )
        sys.exit(1)

    config = config_manager.create_default_config()
    if mongo_url:
        config.source.url = mongo_url
    if es_host:
        config.destination.host = es_host
    if index_name:
        config.destination.index_name = index_name
    if batch_size:
        config.pipeline.batch_size = batch_size
    config_manager.save(config)

    console.print(f"✅ Configuration written to {config_manager.config_path}", style="green")


@cli.command("config")
@click.option("--show", is_flag=True, help="Print the effective configuration")
@click.pass_context
def config_command(ctx, show: bool):
    """Show configuration."""
    config = _load_config(ctx)
    config_manager: ConfigManager = ctx.obj["config_manager"]

    if show:
        click.echo(json.dumps(config.model_dump(mode="json"), indent=2))
        return

    console.print(f"Config file: {config_manager.config_path}")
    console.print(f"Source: {config.source.collection} @ {config.source.database}")
    console.print(f"Destination: {config.destination.host}/{config.destination.index_name}")


@cli.command("setup-index")
@click.pass_context
def setup_index(ctx):
    """Create the destination index if it does not exist."""
    config = _load_config(ctx)

    with ElasticsearchClient(config.destination, console=console) as sink:
        if sink.index_exists():
            console.print(f"✅ Index {sink.index_name} already exists", style="green")
            return
        if not sink.create_index():
            sys.exit(1)
        console.print(f"✅ Index {sink.index_name} created", style="green")


@cli.command()
@click.pass_context
def status(ctx):
    """Show checkpoint and object store state."""
    config = _load_config(ctx)
    checkpoint = MigrationCheckpoint(config.pipeline.checkpoint_file)

    try:
        state = checkpoint.load()
    except ValueError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    table = Table(title="Plunk Indexer Status")
    table.add_column("Item", style="cyan")
    table.add_column("Value")

    if state is None:
        table.add_row("Checkpoint", "none (next run starts from the beginning)")
    else:
        table.add_row("Watermark (ms)", str(state.watermark_ms))
        table.add_row("Records in last run", f"{state.records_processed:,}")
        table.add_row("Last run completed", "yes" if state.completed else "no")

    if config.objects.path.exists():
        objects = SQLiteObjectStore(config.objects.path).count_objects()
        table.add_row("Stored objects", f"{objects:,}")
    else:
        table.add_row("Stored objects", "0")

    console.print(table)


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx, yes: bool):
    """Delete the checkpoint so the next run migrates everything again."""
    config = _load_config(ctx)
    if not yes and not click.confirm("Discard the migration checkpoint?"):
        return
    if MigrationCheckpoint(config.pipeline.checkpoint_file).clear():
        console.print("✅ Checkpoint removed", style="green")
    else:
        console.print("No checkpoint to remove", style="yellow")


@cli.command()
@click.option(
    "--mongo-url", envvar="MONGO_URL", help="Legacy MongoDB URL (env: MONGO_URL)"
)
@click.option("--id", "record_id", help="Re-migrate a single plunk by id")
@click.option("--no-grace", is_flag=True, help="Exit immediately after completion")
@click.pass_context
def migrate(ctx, mongo_url: Optional[str], record_id: Optional[str], no_grace: bool):
    """Migrate legacy plunks, resuming from the last checkpoint."""
    config = _load_config(ctx)
    config_manager: ConfigManager = ctx.obj["config_manager"]
    exception_logger = ExceptionLogger.initialize(config_manager.project_root)

    if mongo_url:
        config.source.url = mongo_url

    display = MigrationProgressDisplay(console)
    pipeline: Optional[MigrationPipeline] = None

    try:
        with LegacyPlunkSource(
            config.source, page_size=config.pipeline.batch_size
        ) as source, ElasticsearchClient(config.destination, console=console) as sink:
            display.handle_setup_message("Checking index existence")
            if not sink.ensure_index():
                sys.exit(1)

            pipeline = build_pipeline(
                config, source, sink, build_object_store(config), display
            )

            if record_id:
                record = pipeline.migrate_one(record_id)
                console.print(
                    f"✅ Migrated {record.id} ({record.revisions_count} revisions, "
                    f"commit {record.commit_sha})",
                    style="green",
                )
                return

            with display:
                stats = pipeline.run()

        display.handle_completion(stats)
    except MigrationAbortedError as e:
        display.stop()
        exception_logger.log_exception(
            e,
            record_id=e.record_id,
            context={"processed": e.processed, "watermark_ms": e.watermark_ms},
        )
        display.handle_error_message(e.record_id, str(e))
        sys.exit(1)
    except Exception as e:
        display.stop()
        last_record = pipeline.last_record_id if pipeline else None
        exception_logger.log_exception(e, record_id=last_record)
        display.handle_error_message(last_record, f"Uncaught exception: {e}")
        if ctx.obj.get("verbose"):
            import traceback

            console.print(traceback.format_exc())
        sys.exit(1)

    if not no_grace and config.pipeline.exit_grace_seconds > 0:
        time.sleep(config.pipeline.exit_grace_seconds)


def main():
    """Entry point for the plunk-indexer command."""
    cli(obj={})


if __name__ == "__main__":
    main()
