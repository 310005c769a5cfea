"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Maximum number of docs indexed locally by title, and with full text.
# Other documents can still be found by delegating to the remote service.
DEFAULT_TITLE_COUNT = 1500
DEFAULT_FULLTEXT_COUNT = 100


def _get_default_db_path() -> Path:
    """Prefer data/cloudfinder.db in the working directory, else the user's documents folder."""
    local_db = Path("data/cloudfinder.db")
    if local_db.exists():
        return local_db

    return Path.home() / "Documents" / "CloudFinder" / "cloudfinder.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    title_count: int = DEFAULT_TITLE_COUNT
    fulltext_count: int = DEFAULT_FULLTEXT_COUNT
    result_limit: int = 10
    delegate_url: str | None = None
    # Debounce before querying the delegate, in seconds.
    delegate_delay: float = 0.08
    delegate_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
