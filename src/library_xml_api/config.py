"""Runtime settings for the library XML store.

Settings come from environment variables so the same code runs under the
CLI, the ASGI server and the test-suite without extra wiring:

    LIBRARY_DATA_DIR                 Data root (default ``./Data``)
    LIBRARY_CACHE_SLIDING_SECONDS    Sliding cache expiry (default 600)
    LIBRARY_CACHE_ABSOLUTE_SECONDS   Absolute cache expiry (default 3600)
    LIBRARY_LOAN_PERIOD_DAYS         Loan period in days (default 14)
    LIBRARY_SEED_USERS               Seed the default admin user (default true)
    LIBRARY_LOG_LEVEL                Logging level name (default INFO)

Example:
    >>> settings = Settings(data_dir=Path("/tmp/library"))
    >>> settings.schemas_dir
    PosixPath('/tmp/library/Schemas')
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"

SCHEMAS_SUBDIR = "Schemas"
DTDS_SUBDIR = "DTDs"
TRANSFORMS_SUBDIR = "Transforms"

BOOKS_FILE = "books.xml"
MEMBERS_FILE = "members.xml"
BORROWINGS_FILE = "borrowings.xml"
USERS_FILE = "users.xml"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Configuration for the store, validator and service layer.

    Args:
        data_dir: Root holding the collection files and the
            ``Schemas``/``DTDs``/``Transforms`` subdirectories.
        cache_sliding_seconds: Idle time after which a cached collection expires.
        cache_absolute_seconds: Ceiling on a cached collection's lifetime.
        loan_period_days: Days added to the borrow date to get the due date.
        seed_default_users: Create ``admin`` when no users exist.
        log_level: Logging level used by entry points.
    """

    data_dir: Path = field(default_factory=lambda: Path.cwd() / "Data")
    cache_sliding_seconds: float = 600.0
    cache_absolute_seconds: float = 3600.0
    loan_period_days: int = 14
    seed_default_users: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None) -> "Settings":
        """Build settings from ``LIBRARY_*`` environment variables."""
        env_dir = os.getenv("LIBRARY_DATA_DIR")
        return cls(
            data_dir=Path(data_dir or env_dir or Path.cwd() / "Data"),
            cache_sliding_seconds=float(os.getenv("LIBRARY_CACHE_SLIDING_SECONDS", "600")),
            cache_absolute_seconds=float(os.getenv("LIBRARY_CACHE_ABSOLUTE_SECONDS", "3600")),
            loan_period_days=int(os.getenv("LIBRARY_LOAN_PERIOD_DAYS", "14")),
            seed_default_users=_env_bool("LIBRARY_SEED_USERS", True),
            log_level=os.getenv("LIBRARY_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def schemas_dir(self) -> Path:
        return self.data_dir / SCHEMAS_SUBDIR

    @property
    def dtds_dir(self) -> Path:
        return self.data_dir / DTDS_SUBDIR

    @property
    def transforms_dir(self) -> Path:
        return self.data_dir / TRANSFORMS_SUBDIR

    def ensure_directories(self) -> None:
        """Create the data root and its subdirectories if missing."""
        for path in (self.data_dir, self.schemas_dir, self.dtds_dir, self.transforms_dir):
            path.mkdir(parents=True, exist_ok=True)


def init_data_dir(data_dir: Path, overwrite: bool = False) -> int:
    """Install the bundled schemas, rules, DTDs and stylesheets into ``data_dir``.

    Existing files are left untouched unless ``overwrite`` is set.

    Returns:
        Number of files copied.
    """
    settings = Settings(data_dir=data_dir)
    settings.ensure_directories()
    copied = 0
    for subdir in (SCHEMAS_SUBDIR, DTDS_SUBDIR, TRANSFORMS_SUBDIR):
        for source in sorted((RESOURCES_DIR / subdir).iterdir()):
            if not source.is_file():
                continue
            target = settings.data_dir / subdir / source.name
            if target.exists() and not overwrite:
                continue
            shutil.copyfile(source, target)
            copied += 1
    return copied
