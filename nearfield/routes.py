"""FastAPI endpoints under /api.

  POST   /api/stories/{story_id}/scenes/{scene_id}/advance    one protocol step
  GET    /api/stories/{story_id}/scenes/{scene_id}/traversal  live traversal state
  DELETE /api/stories/{story_id}/scenes/{scene_id}/traversal  discard a traversal
  POST   /api/stories/{story_id}/reset                        replay a story from the start
  GET    /api/stories/{story_id}/clues                        clue inbox for a story
  POST   /api/clues/{clue_id}/status                          move a clue forward
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from nearfield.clues import ClueInbox
from nearfield.engine import DEFAULT_SESSION, AdvanceEngine
from nearfield.errors import (
    ActionKeyNotFound,
    InvalidAction,
    NearFieldError,
    PolicyExhausted,
    ProviderError,
    ProviderTimeout,
    SceneNotFound,
)
from nearfield.models import ActionType, AdvanceResult, ClueStatus

logger = logging.getLogger(__name__)

router = APIRouter()

GENERIC_ERROR = "Something went wrong, try again"

_STATUS_CODES: dict[type[NearFieldError], int] = {
    SceneNotFound: 404,
    ActionKeyNotFound: 404,
    PolicyExhausted: 409,
    InvalidAction: 409,
    ProviderTimeout: 504,
    ProviderError: 502,
}


class AdvanceBody(BaseModel):
    action: ActionType
    turn_input: str | None = None
    session_id: str = DEFAULT_SESSION


class ClueStatusBody(BaseModel):
    status: ClueStatus


def _engine(request: Request) -> AdvanceEngine:
    return request.app.state.engine


def _inbox(request: Request) -> ClueInbox:
    return request.app.state.clue_inbox


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/stories/{story_id}/scenes/{scene_id}/advance", response_model=AdvanceResult)
async def advance(story_id: str, scene_id: str, body: AdvanceBody, request: Request):
    """Run one near-field step for the scene."""
    try:
        return await _engine(request).advance(
            story_id, scene_id, body.action, turn_input=body.turn_input, session_id=body.session_id
        )
    except NearFieldError as e:
        status = _STATUS_CODES.get(type(e), 500)
        logger.warning("advance %s:%s %s failed (%s): %s", story_id, scene_id, body.action, e.code, e)
        raise HTTPException(status, {"error": e.code, "message": GENERIC_ERROR})


@router.get("/stories/{story_id}/scenes/{scene_id}/traversal")
async def get_traversal(story_id: str, scene_id: str, request: Request, session_id: str = DEFAULT_SESSION):
    """Current state, entity ledger and turn budget of a traversal."""
    traversal = _engine(request).traversal(story_id, scene_id, session_id)
    if traversal is None:
        raise HTTPException(404, "Traversal not found")
    progress = traversal.tracker.progress() or traversal.final_policy
    return {
        "story_id": story_id,
        "scene_id": scene_id,
        "session_id": session_id,
        "state": traversal.state,
        "entities": traversal.ledger.snapshot_all(),
        "interaction_policy": progress.model_dump() if progress else None,
        "next_scene_id": traversal.next_scene_id,
        "is_story_over": traversal.is_story_over,
    }


@router.delete("/stories/{story_id}/scenes/{scene_id}/traversal")
async def delete_traversal(story_id: str, scene_id: str, request: Request, session_id: str = DEFAULT_SESSION):
    if not await _engine(request).end_traversal(story_id, scene_id, session_id):
        raise HTTPException(404, "Traversal not found")
    return {"ok": True}


@router.post("/stories/{story_id}/reset")
async def reset_story(story_id: str, request: Request, session_id: str = DEFAULT_SESSION):
    """Forget the session's traversals and story-over flag so the story can be replayed."""
    await _engine(request).reset_story(story_id, session_id)
    return {"ok": True}


@router.get("/stories/{story_id}/clues")
async def list_clues(story_id: str, request: Request):
    """Clues the player has collected in this story, in the order they were found."""
    return [c.model_dump() for c in _inbox(request).list(story_id)]


@router.post("/clues/{clue_id}/status")
async def update_clue_status(clue_id: str, body: ClueStatusBody, request: Request):
    try:
        clue = _inbox(request).set_status(clue_id, body.status)
    except KeyError:
        raise HTTPException(404, "Clue not found")
    except ValueError as e:
        raise HTTPException(409, str(e))
    return clue.model_dump()
