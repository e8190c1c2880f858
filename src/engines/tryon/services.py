import uuid
import asyncio
from datetime import datetime
from typing import Optional

from src.core.exceptions import (
    TryOnBaseException,
    MissingInputError,
    UploadTooLargeError,
    MalformedOverlayError,
    CompositingFailureError,
)
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_tryon_outcome, track_stage_latency
from src.core.storage import ITempStorage, TempResourceManager
from src.engines.tryon.anchor import IAnchorLocator
from src.engines.tryon.compositor import composite
from src.engines.tryon.placement import DEFAULT_OVERLAY_FRACTION, MAX_OVERLAY_SCALE, compute_placement
from src.engines.tryon.schemas import ImageAsset, TryOnResult, TryOnState, UploadDTO

logger = get_logger(__name__)


class TryOnService:
    """
    Pipeline orchestrator for one try-on request.

    States: VALIDATING -> LOCATING_ANCHOR -> COMPOSITING -> DONE | FAILED.

    - Missing or oversized uploads are rejected before anything is stored.
    - Uploads are held as temp artifacts inside a TempResourceManager scope,
      so they are released before run() returns or raises.
    - The anchor locator is expected to absorb vision failures itself.
    - Anything unexpected after validation surfaces as CompositingFailureError.
    """

    def __init__(
        self,
        storage: ITempStorage,
        anchor_locator: IAnchorLocator,
        default_fraction: float = DEFAULT_OVERLAY_FRACTION,
        max_upload_bytes: Optional[int] = None,
        max_overlay_scale: float = MAX_OVERLAY_SCALE
    ):
        self.storage = storage
        self.anchor_locator = anchor_locator
        self.default_fraction = default_fraction
        self.max_upload_bytes = max_upload_bytes
        self.max_overlay_scale = max_overlay_scale

    def _validate_uploads(self, subject: Optional[UploadDTO], overlay: Optional[UploadDTO]):
        missing = [
            name for name, upload in (("subject", subject), ("overlay", overlay))
            if upload is None or upload.is_empty
        ]
        if missing:
            raise MissingInputError(missing)

        if self.max_upload_bytes:
            for upload in (subject, overlay):
                if len(upload.data) > self.max_upload_bytes:
                    raise UploadTooLargeError(upload.field_name, len(upload.data), self.max_upload_bytes)

    @staticmethod
    def _decode_overlay(data: bytes) -> ImageAsset:
        try:
            asset = ImageAsset.from_bytes(data)
        except Exception as e:
            raise MalformedOverlayError(f"Overlay is not a readable image: {e}") from e

        if asset.width <= 0 or asset.height <= 0:
            raise MalformedOverlayError(
                f"Overlay has invalid dimensions {asset.width}x{asset.height}",
                details={"overlay_width": asset.width, "overlay_height": asset.height}
            )
        return asset

    @staticmethod
    def _decode_subject(data: bytes) -> ImageAsset:
        try:
            return ImageAsset.from_bytes(data, upright=True)
        except Exception as e:
            raise CompositingFailureError(f"Subject is not a readable image: {e}", stage="decode") from e

    async def run(
        self,
        subject: Optional[UploadDTO],
        overlay: Optional[UploadDTO],
        overlay_width: Optional[float] = None,
        request_id: Optional[str] = None
    ) -> TryOnResult:
        request_id = request_id or str(uuid.uuid4())
        state = TryOnState.VALIDATING
        start_time = datetime.utcnow()

        with LogContext(request_id=request_id, stage=state.value) as log_ctx:
            logger.info(
                "tryon_request_received",
                subject_bytes=len(subject.data) if subject else 0,
                overlay_bytes=len(overlay.data) if overlay else 0,
                overlay_width_hint=overlay_width
            )

            try:
                self._validate_uploads(subject, overlay)

                async with TempResourceManager(self.storage, request_id) as temps:
                    subject_artifact = await temps.acquire(
                        subject.data, subject.filename, field="subject", content_type=subject.content_type
                    )
                    overlay_artifact = await temps.acquire(
                        overlay.data, overlay.filename, field="overlay", content_type=overlay.content_type
                    )

                    overlay_asset = self._decode_overlay(await temps.read(overlay_artifact))
                    subject_asset = self._decode_subject(await temps.read(subject_artifact))

                    state = TryOnState.LOCATING_ANCHOR
                    log_ctx.set_stage(state.value)
                    anchor = await self.anchor_locator.locate(subject_asset)

                    state = TryOnState.COMPOSITING
                    log_ctx.set_stage(state.value)
                    plan = compute_placement(
                        subject_asset.width,
                        subject_asset.height,
                        anchor,
                        overlay_asset.width,
                        overlay_asset.height,
                        target_width=overlay_width,
                        default_fraction=self.default_fraction,
                        max_scale=self.max_overlay_scale
                    )
                    logger.info("placement_computed", **plan.model_dump())

                    with track_stage_latency("compositing"):
                        content = await asyncio.to_thread(composite, subject_asset, overlay_asset, plan)

            except TryOnBaseException as e:
                e.request_id = e.request_id or request_id
                self._record_failure(e, state, start_time)
                raise

            except Exception as e:
                error = CompositingFailureError(
                    f"Try-on failed: {e}",
                    stage=state.value,
                    request_id=request_id,
                    details={"error_type": type(e).__name__}
                )
                self._record_failure(error, state, start_time)
                raise error from e

            duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
            record_tryon_outcome("success")
            logger.info(
                "tryon_completed",
                state=TryOnState.DONE.value,
                duration_ms=duration_ms,
                anchor_source=anchor.source.value,
                output_bytes=len(content)
            )

            return TryOnResult(
                request_id=request_id,
                content=content,
                width=subject_asset.width,
                height=subject_asset.height,
                anchor=anchor,
                plan=plan
            )

    @staticmethod
    def _record_failure(error: TryOnBaseException, state: TryOnState, start_time: datetime):
        duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        record_tryon_outcome(error.kind)
        log = logger.warning if error.is_client_error else logger.error
        log(
            "tryon_failed",
            state=TryOnState.FAILED.value,
            failed_in=state.value,
            kind=error.kind,
            error=error.message,
            duration_ms=duration_ms
        )
