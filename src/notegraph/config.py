"""Configuration module for the notegraph engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notegraph import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Debounce window accepted for reference resolution (milliseconds)
MIN_DEBOUNCE_MS = 150
MAX_DEBOUNCE_MS = 300


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteGraphConfig(BaseModel):
    """Configuration for the notegraph engine and server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # When True, uses an in-memory SQLite database (handy for demos and tests).
    in_memory_db: bool = Field(
        default_factory=lambda: _env_bool("NOTEGRAPH_IN_MEMORY_DB", "false")
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTEGRAPH_SERVER_NAME", "notegraph"))
    server_version: str = Field(default=__version__)
    # Owner used when the MCP client does not pass one explicitly
    default_owner_id: Optional[str] = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_OWNER_ID") or None
    )

    # Reference resolution
    resolver_debounce_ms: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_RESOLVER_DEBOUNCE_MS", "250"))
    )
    resolver_result_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_RESOLVER_LIMIT", "10"))
    )
    recent_notes_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_RECENT_LIMIT", "10"))
    )

    # Optimistic mutations
    undo_capacity: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_UNDO_CAPACITY", "50"))
    )
    # Settled mutations kept per coordinator for inspection
    mutation_history: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_MUTATION_HISTORY", "100"))
    )
    # Idle per-note coordinators beyond this are evicted, oldest first
    coordinator_cache_size: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_COORDINATOR_CACHE", "32"))
    )
    # Rename handling: False keeps canonical title/slug as a creation-time snapshot
    propagate_renames: bool = Field(
        default_factory=lambda: _env_bool("NOTEGRAPH_PROPAGATE_RENAMES", "false")
    )

    # Network layout on a 600x400 canvas
    layout_center_x: float = Field(default=300.0)
    layout_center_y: float = Field(default=200.0)
    layout_radius: float = Field(default=150.0)
    visual_max_nodes: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_VISUAL_MAX_NODES", "20"))
    )

    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_LOG_DIR"))
            if os.getenv("NOTEGRAPH_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_ranges(self) -> "NoteGraphConfig":
        """Reject settings the engine cannot honour."""
        if not MIN_DEBOUNCE_MS <= self.resolver_debounce_ms <= MAX_DEBOUNCE_MS:
            raise ValueError(
                f"resolver_debounce_ms must be between {MIN_DEBOUNCE_MS} "
                f"and {MAX_DEBOUNCE_MS}"
            )
        if self.resolver_result_limit < 1:
            raise ValueError("resolver_result_limit must be >= 1")
        if self.recent_notes_limit < 1:
            raise ValueError("recent_notes_limit must be >= 1")
        if self.undo_capacity < 1:
            raise ValueError("undo_capacity must be >= 1")
        if self.mutation_history < 0:
            raise ValueError("mutation_history must be >= 0")
        if self.coordinator_cache_size < 1:
            raise ValueError("coordinator_cache_size must be >= 1")
        if self.visual_max_nodes < 1:
            raise ValueError("visual_max_nodes must be >= 1")
        if self.layout_radius <= 0:
            raise ValueError("layout_radius must be positive")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NoteGraphConfig()
