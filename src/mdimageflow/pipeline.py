"""Upload detected images and rewrite their references."""

import logging
from dataclasses import dataclass

from .config import FlowConfig
from .core.model import ImageEvent, RewriteOutcome, UploadResult
from .core.ports import DocumentStore, Uploader
from .rewrite import LinkRewriter

logger = logging.getLogger("mdimageflow.pipeline")


@dataclass
class FlowResult:
    """What happened to one detected image."""
    event: ImageEvent
    upload: UploadResult | None = None
    rewrite: RewriteOutcome | None = None
    deleted: bool = False


class ImageFlow:
    """Glue between the correlator, an uploader and the link rewriter."""

    def __init__(self, config: FlowConfig, documents: DocumentStore, uploader: Uploader):
        self.config = config
        self.uploader = uploader
        self.rewriter = LinkRewriter(documents, config.scores)

    def update_config(self, config: FlowConfig) -> None:
        self.config = config
        self.rewriter.weights = config.scores

    async def handle(self, event: ImageEvent) -> FlowResult:
        result = FlowResult(event=event)

        if event.markdown_file is None:
            logger.warning(
                "Image %s was saved but no document could be matched to it", event.relative_path
            )
            return result

        upload = await self.uploader.upload(event.file_path)
        result.upload = upload
        if not upload.success or not upload.url:
            logger.error("Upload to %s failed: %s", upload.provider, upload.error)
            return result

        outcome = self.rewriter.replace_image_link(
            event.markdown_file, event.file_path, upload.url
        )
        result.rewrite = outcome
        if not outcome.success:
            logger.warning("Image uploaded but the link could not be replaced: %s", outcome.error)
            return result

        if self.config.upload.delete_local_after_upload:
            try:
                event.file_path.unlink()
                result.deleted = True
            except OSError as e:
                logger.error("Could not delete %s: %s", event.file_path, e)

        return result
