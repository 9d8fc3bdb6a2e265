"""
Render the catalog of built books.

Two modes, chosen by whether a templates directory is configured:

- templated: every file under the templates directory is a Jinja2 template,
  rendered with {title, timestamp, entries} into the same relative path under
  the destination directory
- manifest: a manifest.json with the same data, for machine consumption
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Sequence

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    select_autoescape,
)

from common.constants import MANIFEST_FILENAME
from common.logger import get_logger

from .models import BuildRecord, CatalogEntry
from .types import RenderError

logger = get_logger(__name__)


class OutputMode(str, Enum):
    TEMPLATED = "templated"
    MANIFEST = "manifest"


def output_mode(templates_dir: Path | None) -> OutputMode:
    return OutputMode.TEMPLATED if templates_dir is not None else OutputMode.MANIFEST


def utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def catalog_timestamp(records: Sequence[BuildRecord]) -> str:
    """
    Timestamp of the catalog: when its newest artifact was built.

    Tied to the records rather than the clock so that a run which reuses every
    artifact renders the same bytes as the run before it.
    """
    built = [r.built_at for r in records if r.built_at]
    if not built:
        return utc_now()
    return max(built, key=lambda value: datetime.fromisoformat(value))


def format_date(value: str, format: str = "%Y-%m-%d") -> str:
    """Jinja filter: format an RFC 3339 timestamp with strftime."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return value
    return parsed.strftime(format)


def create_environment(templates_dir: Path) -> Environment:
    """Jinja2 environment with the filters catalog templates rely on.

    Besides Jinja's own ``filesizeformat`` and ``urlencode``, a ``date``
    filter formats the RFC 3339 timestamps found in the context.
    """
    environment = Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html", "htm", "xml"]),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    environment.filters["date"] = format_date
    return environment


def build_context(title: str, timestamp: str, entries: Sequence[CatalogEntry]) -> dict:
    return {
        "title": title,
        "timestamp": timestamp,
        "entries": [entry.to_dict() for entry in entries],
    }


def _template_names(templates_dir: Path) -> list[str]:
    names = []
    for path in sorted(templates_dir.rglob("*")):
        if path.is_file():
            names.append(path.relative_to(templates_dir).as_posix())
    return names


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def render_templates(
    templates_dir: Path,
    context: dict,
) -> dict[str, str]:
    """
    Render every template under templates_dir in memory.

    Returns:
        Mapping of relative template path to rendered text

    Raises:
        RenderError: If the directory is missing or any template fails
    """
    if not templates_dir.is_dir():
        raise RenderError(f"Templates directory {templates_dir} does not exist")

    environment = create_environment(templates_dir)
    rendered: dict[str, str] = {}

    for name in _template_names(templates_dir):
        try:
            rendered[name] = environment.get_template(name).render(context)
        except TemplateError as e:
            lineno = getattr(e, "lineno", None)
            where = f"{name}:{lineno}" if lineno else name
            raise RenderError(f"Template error in {where}: {e}") from e
        except UnicodeDecodeError as e:
            raise RenderError(f"Template {name} is not valid UTF-8: {e}") from e

    return rendered


def write_manifest(
    destination_dir: Path,
    title: str,
    timestamp: str,
    entries: Sequence[CatalogEntry],
) -> Path:
    """Write manifest.json with sorted keys, indented two spaces."""
    manifest = build_context(title, timestamp, entries)
    manifest_path = destination_dir / MANIFEST_FILENAME
    logger.info(f"Writing manifest to {manifest_path}")

    content = json.dumps(manifest, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    try:
        _write_atomic(manifest_path, content)
    except OSError as e:
        raise RenderError(f"Could not write {manifest_path}: {e}") from e
    return manifest_path


def assemble(
    entries: Sequence[CatalogEntry],
    *,
    title: str,
    timestamp: str,
    destination_dir: Path,
    templates_dir: Path | None = None,
) -> list[Path]:
    """
    Render the catalog for the given entries.

    Entries are rendered in the order given; the orchestrator passes them in
    configuration order. Failed sources are simply absent.

    Args:
        entries: Catalog entries of successful sources
        title: Shelf title
        timestamp: Catalog timestamp (RFC 3339)
        destination_dir: Directory receiving the output
        templates_dir: Templates directory, None for manifest mode

    Returns:
        Paths of the written files

    Raises:
        RenderError: On template errors or an unwritable destination
    """
    destination_dir = Path(destination_dir)

    if output_mode(templates_dir) is OutputMode.MANIFEST:
        return [write_manifest(destination_dir, title, timestamp, entries)]

    context = build_context(title, timestamp, entries)
    # Nothing is written unless every template renders
    rendered = render_templates(Path(templates_dir), context)

    written = []
    for name, page in rendered.items():
        output_path = destination_dir / name
        logger.info(f"Rendering template {name} to {output_path}")
        try:
            _write_atomic(output_path, page)
        except OSError as e:
            raise RenderError(f"Could not write {output_path}: {e}") from e
        written.append(output_path)

    return written
