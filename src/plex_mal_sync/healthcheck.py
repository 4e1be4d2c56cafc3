"""Health check script for Docker container."""

import sys
import logging

from plex_mal_sync.config import get_settings, validate_credentials
from plex_mal_sync.errors import MappingTableError
from plex_mal_sync.mapping import MappingService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG_INSTRUCTION = "   Edit data/config.yaml (plex.user, plex.anime_libraries, mal.access_token)"


def main():
    """Check that configuration is usable and the mapping tables load."""
    try:
        settings = get_settings()
    except Exception as e:
        logger.error(f"[ERROR] UNHEALTHY: Failed to load configuration: {e}")
        sys.exit(1)

    is_valid, invalid = validate_credentials(settings)
    if not is_valid:
        logger.error(f"[ERROR] UNHEALTHY: Missing settings: {', '.join(invalid)}")
        logger.error(CONFIG_INSTRUCTION)
        sys.exit(1)

    try:
        table = MappingService(settings.mapping_tvdb_path, settings.mapping_tmdb_path).table
    except MappingTableError as e:
        logger.error(f"[ERROR] UNHEALTHY: Mapping tables failed to load: {e}")
        sys.exit(1)

    if not table.tv and not table.movies:
        logger.error("[ERROR] UNHEALTHY: Mapping tables are empty")
        sys.exit(1)

    logger.info("[OK] HEALTHY: Configuration valid and mappings loaded")
    sys.exit(0)


if __name__ == "__main__":
    main()
