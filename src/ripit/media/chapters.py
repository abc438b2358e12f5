"""FFMETADATA1 chapter sidecar generation."""

import logging
import math
from pathlib import Path

from ripit.media.models import Chapter, SourceFile

logger = logging.getLogger(__name__)

FFMETADATA_HEADER = ";FFMETADATA1\n"


def chapters_file_name(source_id: str) -> str:
    return f"{source_id}-chapters.ffmetadata"


def render_ffmetadata(chapters: list[Chapter]) -> str:
    """Render chapters as an FFMETADATA1 document with millisecond timestamps.

    A chapter without an end time ends where the next one starts, or at its
    own start when it is the last one. Untitled chapters get ``Chapter N``.
    """
    lines = [FFMETADATA_HEADER]
    for index, chapter in enumerate(chapters):
        end = chapter.end_time
        if end is None:
            end = chapters[index + 1].start_time if index + 1 < len(chapters) else chapter.start_time

        title = (chapter.title or "").replace("\r", " ").replace("\n", " ").strip()
        if not title:
            title = f"Chapter {index + 1}"

        lines.append(
            "[CHAPTER]\n"
            "TIMEBASE=1/1000\n"
            f"START={math.floor(chapter.start_time * 1000)}\n"
            f"END={math.floor(end * 1000)}\n"
            f"title={title}\n\n",
        )
    return "".join(lines)


def write_chapters_sidecar(source: SourceFile, directory: Path) -> Path | None:
    """Write the sidecar for ``source`` into ``directory``.

    Returns None when the source carries no chapters.
    """
    chapters = source.chapters
    if not chapters:
        logger.debug("No chapters for %s", source.id)
        return None

    path = directory / chapters_file_name(source.id)
    path.write_text(render_ffmetadata(chapters), encoding="utf-8")
    logger.info(f"Wrote {len(chapters)} chapters to {path.name}")
    return path
