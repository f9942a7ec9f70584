"""Process start-up: logging, data directory and schema."""

from pathlib import Path

from ..config.logging import get_logger, setup_logging
from ..config.settings import get_settings
from ..ormdb.database import create_tables


def ensure_data_directory() -> None:
    """Create the data directory and any missing tables."""
    settings = get_settings()
    Path(settings.data_directory).mkdir(parents=True, exist_ok=True)
    create_tables()
    get_logger(__name__).info("Storage ready", data_dir=settings.data_directory)


def initialize_application() -> None:
    """Configure logging from settings, then prepare storage."""
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        format_type=settings.log_format,
        file_enabled=settings.log_file_enabled,
        file_path=settings.log_file_path,
        max_file_size=settings.log_max_file_size,
        backup_count=settings.log_backup_count,
    )
    ensure_data_directory()

    get_logger(__name__).info(
        "Alert engine initialized",
        environment=settings.environment,
        debug=settings.debug,
    )
