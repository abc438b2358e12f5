"""URL analysis through the extractor's JSON dump."""

import json
import logging
from typing import Any

from ripit.config import ToolPath
from ripit.error_handling import ProcessError, ValidationError
from ripit.media.mappers import map_to_source_file, map_to_url_info
from ripit.media.models import SourceFile, UrlInfo
from ripit.process.cancellation import CancellationToken
from ripit.process.runner import ProcessRunner

logger = logging.getLogger(__name__)


class MediaAnalyzer:
    """Runs the extractor in buffered mode and maps its JSON output."""

    def __init__(self, runner: ProcessRunner, extractor: ToolPath):
        self.runner = runner
        self.extractor = extractor

    async def probe(self, url: str, token: CancellationToken | None = None) -> UrlInfo:
        """Cheap flat probe telling a single video from a playlist or channel."""
        data = await self._dump_json(["--dump-single-json", "--flat-playlist", url], token)
        return map_to_url_info(data)

    async def fetch(self, url: str, token: CancellationToken | None = None) -> SourceFile:
        """Full metadata of a single video, including every available format."""
        data = await self._dump_json(["--dump-single-json", url], token)
        return map_to_source_file(data)

    async def _dump_json(
        self,
        args: list[str],
        token: CancellationToken | None,
    ) -> dict[str, Any]:
        result = await self.runner.run_buffered(self.extractor.path, args, token=token)
        if token is not None:
            token.raise_if_cancelled()

        if not result.completed:
            raise ProcessError(
                self.extractor.name,
                exit_status=str(result.returncode),
                stderr=result.stderr.strip() or None,
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            msg = f"Invalid JSON from {self.extractor.name}: {e}"
            raise ValidationError(msg, original_error=e) from e

        if not isinstance(data, dict):
            msg = f"Unexpected output from {self.extractor.name}"
            raise ValidationError(msg)
        return data
