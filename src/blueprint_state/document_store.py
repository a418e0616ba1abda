from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

from .locking import LOCK_SUFFIX

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".json"


def read_document(path: Path | str) -> dict[str, Any] | None:
    """Read a JSON object from *path*.

    Returns:
        The parsed object, or ``None`` if the file is missing, unreadable,
        not valid JSON, or not a JSON object.
    """
    target = Path(path)
    try:
        text = target.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read document %s: %s", target, exc)
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Document %s is not valid JSON: %s", target, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Document %s is not a JSON object", target)
        return None
    return data


def write_document(path: Path | str, document: Mapping[str, Any]) -> bool:
    """Replace *path* with *document* atomically.

    The payload is written to a per-process temp file in the same directory
    and then renamed over the target, so readers only ever see the previous
    or the new content.

    Returns:
        ``True`` if the document was replaced, ``False`` otherwise. On
        failure the previous content is left as it was.
    """
    target = Path(path)
    try:
        content = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    except (TypeError, ValueError) as exc:
        logger.warning("Cannot serialize document for %s: %s", target, exc)
        return False

    tmp_path: str | None = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent),
            prefix=f".{target.name}.{os.getpid()}.",
            suffix=".tmp",
        )
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, target)
    except OSError as exc:
        logger.warning("Cannot write document %s: %s", target, exc)
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        return False
    return True


def list_documents(directory: Path | str, *, suffix: str = DOCUMENT_SUFFIX) -> list[Path]:
    """Return the document files directly inside *directory*, sorted by name.

    Lock markers and anything that is not a regular file are skipped. A
    missing or unreadable directory yields an empty list.
    """
    base = Path(directory)
    try:
        entries = list(base.iterdir())
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("Cannot list documents in %s: %s", base, exc)
        return []

    documents = [
        entry
        for entry in entries
        if entry.name.endswith(suffix) and not entry.name.endswith(LOCK_SUFFIX) and entry.is_file()
    ]
    return sorted(documents, key=lambda entry: entry.name)
