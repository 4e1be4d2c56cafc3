"""Command-line interface for Plex-MAL sync."""

import logging
import sys
from typing import Optional

import click

from .anime_db import AnimeDatabase
from .config import Settings, get_settings, validate_credentials
from .constants import COMMUNITY_MAP_TMDB_URL, COMMUNITY_MAP_TVDB_URL, MediaKind, SourceDatabase
from .errors import MappingTableError, PayloadError, SyncError
from .mal_client import MALClient
from .mapping import MappingService, calculate_episode, load_mapping_table
from .models import CanonicalEvent, SyncResult
from .normalizer import apply_anidb_fallback
from .plex_client import PlexClient
from .sync_engine import SyncEngine
from .webhook import parse_plex_payload, parse_tautulli_payload

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _show_config_error(invalid_vars: list[str], config_path: str = "data/config.yaml", exit_code: Optional[int] = 1):
    """Display configuration error message and optionally exit."""
    logger.error("="*60)
    logger.error("CONFIGURATION ERROR: Missing or invalid settings")
    logger.error("="*60)
    logger.error("Missing/invalid settings:")
    for var in invalid_vars:
        logger.error(f"  - {var}")
    logger.error("")
    logger.error("Required steps:")
    logger.error("  1. Set plex.user to the Plex account whose plays should sync")
    logger.error("  2. List your anime libraries under plex.anime_libraries")
    logger.error("  3. Put a MAL access token in mal.access_token (or MAL_ACCESS_TOKEN)")
    logger.error(f"  4. Edit {config_path} with these values")
    logger.error("="*60)
    if exit_code is not None:
        sys.exit(exit_code)


def _require_valid_config(settings: Settings):
    """Validate config and exit if invalid."""
    is_valid, invalid_vars = validate_credentials(settings)
    if not is_valid:
        _show_config_error(invalid_vars, str(settings.config_path))


def setup_logging(level: str):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _mapping_service(settings: Settings) -> MappingService:
    return MappingService(settings.mapping_tvdb_path, settings.mapping_tmdb_path)


def build_engine(settings: Settings, dry_run: bool = False) -> SyncEngine:
    """Wire the sync engine from settings."""
    plex_client = None
    if settings.plex_client_configured:
        plex_client = PlexClient(settings.plex_url, settings.plex_token)

    return SyncEngine(
        mapping=_mapping_service(settings),
        mal_client=MALClient(settings.mal_access_token, settings.mal_client_id),
        plex_user=settings.plex_user,
        anime_libraries=settings.anime_libraries,
        anime_db=AnimeDatabase.load(settings.anime_db_path),
        plex_client=plex_client,
        dry_run=dry_run,
    )


def print_sync_result(result: SyncResult):
    """Print sync result to console."""
    if result.dry_run:
        click.echo("\n=== DRY RUN - No changes were made ===")

    click.echo("\n=== Sync Result ===")
    click.echo(f"Success: {result.success}")
    if result.skipped:
        click.echo("Skipped: True")
    if result.mal_id is not None:
        click.echo(f"MAL id: {result.mal_id}")
    if result.episode is not None:
        click.echo(f"Episode: {result.episode}")
    if result.plan is not None:
        for field, value in result.plan.as_form().items():
            click.echo(f"  {field} = {value}")

    if result.errors:
        click.echo(f"\nErrors ({len(result.errors)}):")
        for error in result.errors[:10]:  # Show first 10
            click.echo(f"  - {error}")


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Plex to MyAnimeList sync service."""
    pass


@main.command()
@click.argument("payload", type=click.File("r", encoding="utf-8"))
@click.option(
    "--source",
    type=click.Choice(["plex", "tautulli"]),
    default="plex",
    help="Which webhook format the payload is in",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Compute the update without sending it to MAL",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS),
    default=None,
    help="Logging level",
)
def process(payload, source: str, dry_run: bool, log_level: Optional[str]):
    """Apply one webhook PAYLOAD (JSON file, or - for stdin) to MAL."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    _require_valid_config(settings)

    try:
        body = payload.read()
        envelope = parse_tautulli_payload(body) if source == "tautulli" else parse_plex_payload(body)
    except PayloadError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        engine = build_engine(settings, dry_run=dry_run or settings.dry_run)
        result = engine.process(envelope)
    except MappingTableError as e:
        logger.error(f"Could not load mapping data: {e}")
        sys.exit(1)

    print_sync_result(result)
    sys.exit(0 if result.success or result.skipped else 1)


@main.command()
@click.option(
    "--db",
    "source_db",
    type=click.Choice([db.value for db in SourceDatabase]),
    default=SourceDatabase.TVDB.value,
    help="Database the id belongs to",
)
@click.option("--id", "source_id", type=int, required=True, help="Series or movie id")
@click.option("--season", type=int, default=1, help="Source season number")
@click.option("--episode", type=int, default=1, help="Source episode number")
@click.option("--movie", is_flag=True, help="Look the id up as a movie")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS),
    default="WARNING",
    help="Logging level",
)
def resolve(source_db: str, source_id: int, season: int, episode: int, movie: bool, log_level: str):
    """Show which MAL title and episode a source id resolves to."""
    settings = get_settings()
    setup_logging(log_level)

    event = CanonicalEvent(
        source_database=SourceDatabase(source_db),
        source_id=source_id,
        season=1 if movie else season,
        episode=1 if movie else episode,
        media_kind=MediaKind.MOVIE if movie else MediaKind.EPISODE,
    )

    try:
        if event.source_database == SourceDatabase.ANIDB and event.season > 1:
            event = apply_anidb_fallback(event, AnimeDatabase.load(settings.anime_db_path))
        resolved = _mapping_service(settings).resolve(event)
        mal_episode = calculate_episode(resolved, event.episode)
    except SyncError as e:
        click.echo(f"Error ({e.error_kind}): {e}", err=True)
        sys.exit(1)

    click.echo(f"MAL id: {resolved.mal_id}")
    click.echo(f"MAL episode: {mal_episode}")
    click.echo(f"Mapping: {resolved.mapping_mode.value} (start={resolved.start}, ranged={resolved.use_range_mapping})")


@main.command(name="check-map")
def check_map():
    """Load the configured mapping tables and report problems."""
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        table = load_mapping_table(
            settings.mapping_tvdb_path or COMMUNITY_MAP_TVDB_URL,
            settings.mapping_tmdb_path or COMMUNITY_MAP_TMDB_URL,
            strict=True,
        )
    except MappingTableError as e:
        click.echo(f"Mapping invalid: {e}", err=True)
        sys.exit(1)

    click.echo(f"TV mappings: {len(table.tv)}")
    click.echo(f"Movie mappings: {len(table.movies)}")


if __name__ == "__main__":
    main()
