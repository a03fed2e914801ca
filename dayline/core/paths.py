"""
Where dayline keeps its files

All state lives beside the active configuration file: the SQLite database,
logs and a tmp/ area for stitched batch videos and extracted frames.
"""

from pathlib import Path
from typing import Optional

from dayline.config.loader import get_config
from dayline.core.logger import get_logger

logger = get_logger(__name__)


def ensure_dir(dir_path: Path) -> Path:
    """Create dir_path (and parents) when missing and return it as a Path"""
    path = Path(dir_path)
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created directory: {path}")
    return path


def _under(base: Path, subdir: Optional[str]) -> Path:
    return ensure_dir(base / subdir if subdir else base)


def get_data_dir(subdir: Optional[str] = None) -> Path:
    """
    Directory holding the config file, optionally a named child of it.

    Pointing DAYLINE_CONFIG_FILE elsewhere moves all state with it.
    """
    return _under(Path(get_config().config_file).expanduser().parent, subdir)


def get_tmp_dir(subdir: Optional[str] = None) -> Path:
    """Scratch space for batch videos; subdir="frames" for sampled stills"""
    return _under(get_data_dir("tmp"), subdir)


def get_db_path(db_name: str = "dayline.db") -> Path:
    return get_data_dir() / db_name
