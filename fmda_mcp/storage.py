"""JSON files holding credentials; always written owner read/write only."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import CorruptStateError

logger = logging.getLogger(__name__)

FILE_MODE = 0o600


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Return the parsed object, None when the file is missing.

    Raises CorruptStateError when the content is not a JSON object.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise CorruptStateError(f"{path} is not UTF-8 text: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptStateError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CorruptStateError(f"{path} does not contain a JSON object")
    return data


def write_json(path: Path, data: Dict[str, Any]) -> None:
    """Replace the file with `data` and re-apply FILE_MODE."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    # Some platforms reset the mode on rewrite.
    os.chmod(path, FILE_MODE)
    logger.debug("Wrote %s", path)


def remove_file(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
