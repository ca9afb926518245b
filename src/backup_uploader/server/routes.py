"""
API routes for the Backup Uploader server.

Uploads take hours, so the API only queues actions; a background consumer runs them.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core.action_queue import ActionQueue
from ..core.exceptions import ConfigurationError
from ..core.models import (
    Action,
    ActionQueuedResponse,
    QueueStatusResponse,
    Settings,
    SourcesResponse,
)

router = APIRouter(
    prefix="",
    tags=["Actions"],
    responses={
        500: {"description": "Internal server error"},
    },
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_queue(request: Request) -> ActionQueue:
    return request.app.state.queue


@router.get(
    "/actions",
    response_model=QueueStatusResponse,
    summary="Show queued actions",
    description="The action currently running, if any, and the actions waiting behind it.",
)
async def list_actions(queue: ActionQueue = Depends(get_queue)) -> QueueStatusResponse:
    current, queued = queue.snapshot()
    return QueueStatusResponse(current=current, queued=queued)


@router.post(
    "/actions",
    response_model=ActionQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue an action",
    description="Queue uploads for one source, or for every source when `source` is empty.",
)
async def queue_action(
    action: Action,
    settings: Settings = Depends(get_settings),
    queue: ActionQueue = Depends(get_queue),
) -> ActionQueuedResponse:
    if not (action.upload_dropbox or action.upload_gdrive):
        raise HTTPException(status_code=400, detail="Action must select at least one upload")
    try:
        settings.selected_sources(action.source)
    except ConfigurationError as e:
        raise HTTPException(status_code=404, detail=str(e))

    position = queue.push(action)
    return ActionQueuedResponse(action=action, position=position)


@router.get(
    "/sources",
    response_model=SourcesResponse,
    summary="List sources",
    description="Names of the sources whose exports can be uploaded.",
)
async def list_sources(settings: Settings = Depends(get_settings)) -> SourcesResponse:
    return SourcesResponse(sources=settings.sources, total_count=len(settings.sources))
