"""Task handlers and their registration on the lanes."""

import logging

from ripit.config import RipitConfig, ToolPath
from ripit.error_handling import DependencyError, ValidationError
from ripit.media.extractor import MediaAnalyzer
from ripit.media.models import MediaFileData, MediaFileStatus, UrlInfo
from ripit.media.pipeline import MediaPipeline, Stage
from ripit.process.runner import ProcessRunner
from ripit.services.settings import SettingsStore
from ripit.storage.queue import QueueStore
from ripit.tasks.payloads import (
    AddMediaFilePayload,
    AnalyzeMediaInfoPayload,
    AppSettingsGetPayload,
    AppSettingsSetPayload,
    DeleteMediaFilesPayload,
    UpdateMediaFilePayload,
)
from ripit.tasks.processor import TaskProcessor
from ripit.tasks.sequential import SequentialTaskProcessor
from ripit.tasks.types import TaskContext, TaskType

logger = logging.getLogger(__name__)


class TaskHandlers:
    """Handlers for every task type, bound to the shared services."""

    def __init__(
        self,
        config: RipitConfig,
        runner: ProcessRunner,
        queue: QueueStore,
        settings: SettingsStore,
    ):
        self.config = config
        self.runner = runner
        self.queue = queue
        self.settings = settings

    def _require(self, binary: str, resolved: ToolPath | None, install: str | None = None) -> ToolPath:
        if resolved is None:
            raise DependencyError(binary, install_command=install)
        return resolved

    def analyzer(self) -> MediaAnalyzer:
        extractor = self._require(
            self.config.extractor_binary,
            self.config.extractor,
            "pipx install yt-dlp",
        )
        return MediaAnalyzer(self.runner, extractor)

    def pipeline(self) -> MediaPipeline:
        return MediaPipeline(
            self.config,
            self.runner,
            extractor=self._require(
                self.config.extractor_binary,
                self.config.extractor,
                "pipx install yt-dlp",
            ),
            transcoder=self._require(self.config.transcoder_binary, self.config.transcoder),
            prober=self.config.prober,
        )

    # Concurrent lane

    async def analyze_media_info(self, ctx: TaskContext) -> None:
        payload: AnalyzeMediaInfoPayload = ctx.payload
        analyzer = self.analyzer()

        ctx.progress("Step 1/2. Detecting media type")
        info = await analyzer.probe(payload.url, ctx.token)
        ctx.token.raise_if_cancelled()

        if info.type != "video":
            error = ValidationError(
                "Video expected",
                details=f"URL points to a {info.type} with {info.count} entries",
            )
            error.event_payload = UrlInfo(type="error", count=0, error="Video expected").to_dict()
            raise error

        ctx.progress(f"Step 2/2. Fetching full metadata for: {info.title or 'no title'}")
        source = await analyzer.fetch(payload.url, ctx.token)
        ctx.result(source.to_dict())

    async def add_media_file(self, ctx: TaskContext) -> None:
        payload: AddMediaFilePayload = ctx.payload
        success = self.queue.add(payload.file)
        message = "Media file successfully added" if success else "Media file already queued"
        ctx.result({"success": success}, message)
        self.queue.request_list()

    async def update_media_file(self, ctx: TaskContext) -> None:
        payload: UpdateMediaFilePayload = ctx.payload
        updated = self.queue.update(payload.updated_file)
        ctx.result({"updated": updated}, "File updated" if updated else "File not found")

    async def delete_media_files(self, ctx: TaskContext) -> None:
        payload: DeleteMediaFilesPayload = ctx.payload
        ids = payload.delete_file_ids
        self.queue.remove_files(ids)
        count = len(ids)
        ctx.result(
            {"deleted": ids},
            f"Success: {count} media file{'s' if count != 1 else ''} deleted",
        )
        self.queue.request_list()

    async def get_media_files(self, ctx: TaskContext) -> None:
        self.queue.request_list()
        ctx.result()

    async def get_app_settings(self, ctx: TaskContext) -> None:
        payload: AppSettingsGetPayload = ctx.payload
        if payload.key is None:
            ctx.result(self.settings.get_config().to_dict())
        else:
            ctx.result({payload.key: self.settings.get_param(payload.key)})

    async def set_app_settings(self, ctx: TaskContext) -> None:
        payload: AppSettingsSetPayload = ctx.payload
        self.settings.set_param(payload.key, payload.value)
        ctx.result(self.settings.get_config().to_dict(), f"Setting {payload.key} saved")

    # Sequential lane

    async def download_media_file(self, ctx: TaskContext) -> None:
        """Download and merge one queue entry, tracking its status in the queue."""
        file: MediaFileData = ctx.payload
        pipeline = self.pipeline()
        base_dir = self.settings.base_download_dir()

        self._set_status(file.id, MediaFileStatus.DOWNLOADING)
        try:
            result = await pipeline.run(file, base_dir, ctx)
        except BaseException:
            # an aborted download can simply be started again
            status = MediaFileStatus.ADDED if ctx.token.cancelled else MediaFileStatus.ERROR
            self._set_status(file.id, status)
            raise

        stored = self.queue.get(file.id)
        if stored is not None:
            stored.mark_loaded(result.size)
            self.queue.update(stored)
            self.queue.request_list()

        ctx.result(
            {
                "fileId": file.id,
                "stage": Stage.RESULT.value,
                "fileSize": result.human_size,
                "filePath": str(result.path),
            },
            f"File '{file.source.title}' downloaded and merged successfully",
        )

    def _set_status(self, file_id: str, status: MediaFileStatus) -> None:
        if self.queue.set_status(file_id, status):
            self.queue.request_list()
        else:
            logger.debug("File %s is not in the queue, status %s not stored", file_id, status.value)


def register_handlers(
    handlers: TaskHandlers,
    concurrent: TaskProcessor,
    sequential: SequentialTaskProcessor,
) -> None:
    """Register every handler on its lane. Duplicate registration raises RegistrationError."""
    concurrent.register(TaskType.ANALYZE_MEDIA_INFO.value, handlers.analyze_media_info)
    concurrent.register(TaskType.ADD_MEDIAFILE.value, handlers.add_media_file)
    concurrent.register(TaskType.UPDATE_MEDIAFILE.value, handlers.update_media_file)
    concurrent.register(TaskType.DELETE_MEDIAFILES.value, handlers.delete_media_files)
    concurrent.register(TaskType.GET_MEDIAFILES_REQ.value, handlers.get_media_files)
    concurrent.register(TaskType.APP_SETTINGS_GET.value, handlers.get_app_settings)
    concurrent.register(TaskType.APP_SETTINGS_SET.value, handlers.set_app_settings)

    sequential.register_batch_task(
        TaskType.DOWNLOAD_MEDIAFILES_REQ.value,
        handlers.download_media_file,
    )
