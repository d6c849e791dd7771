"""HTTP API layer: audio upload endpoint that starts one assistant invocation."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException

from ava.agent.runtime.pipeline import UploadField
from ava.api.deps import get_container, require_device_id
from ava.core.container import AppContainer
from ava.infra.observability.logger import get_logger
from ava.protocol.messages import AssistantAck

router = APIRouter(tags=["assistant"])
logger = get_logger(__name__)


async def _read_fields(request: Request) -> list[UploadField]:
    try:
        form = await request.form()
    except MultiPartException as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    fields: list[UploadField] = []
    try:
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                fields.append(
                    UploadField(
                        name=name,
                        content=await value.read(),
                        filename=value.filename,
                        content_type=value.content_type,
                    )
                )
            else:
                fields.append(UploadField(name=name, content=None))
    finally:
        await form.close()
    return fields


@router.post("/assistant", response_model=AssistantAck)
async def assistant(
    request: Request,
    background_tasks: BackgroundTasks,
    device_id: str = Depends(require_device_id),
    container: AppContainer = Depends(get_container),
) -> AssistantAck:
    fields = await _read_fields(request)
    pipeline = container.pipeline
    invocation = pipeline.start(device_id)
    upload = pipeline.accept_upload(invocation, fields)
    if upload is None:
        return AssistantAck(status="error")
    logger.info(
        "api.assistant.accepted device_id=%s invocation_id=%s bytes=%s content_type=%s",
        device_id,
        invocation.invocation_id,
        len(upload.content),
        upload.content_type,
    )
    # Runs after the acknowledgement is sent; viewers follow progress on /events.
    background_tasks.add_task(pipeline.run, invocation, upload)
    return AssistantAck(status="done")
