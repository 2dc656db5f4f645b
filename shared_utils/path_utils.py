"""
Path helpers: input checks and all-or-nothing output files.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union


def ensure_directory(path: Union[str, Path]) -> Path:
    """Create a directory (and parents) if missing and return it."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def validate_file_exists(path: Union[str, Path], description: str = "") -> Path:
    """
    Return the path of an existing input file.

    Raises:
        FileNotFoundError: If nothing exists at the path
        ValueError: If the path is a directory
    """
    path = Path(path)
    label = f" ({description})" if description else ""
    if not path.exists():
        raise FileNotFoundError(f"File not found{label}: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file{label}: {path}")
    return path


@contextmanager
def atomic_output(path: Union[str, Path]) -> Iterator[Path]:
    """
    Yield a temporary sibling path that replaces `path` on success.

    On error the temporary file is removed and the previous content of
    `path`, if any, is untouched.

    Example:
        >>> with atomic_output('results/core_stocks.csv') as tmp:
        ...     table.to_csv(tmp, index=False)
    """
    path = Path(path)
    ensure_directory(path.parent)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        yield tmp_path
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
