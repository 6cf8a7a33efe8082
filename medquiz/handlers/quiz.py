import logging

import pydantic
from aiohttp import web

from database.models import QuizSelection
from medquiz.errors import ValidationError
from medquiz.handlers.common import DB, SESSIONS, current_user, read_json, require_subscriber
from medquiz.services.catalog import catalog

logger = logging.getLogger(__name__)

routes = web.RouteTableDef()


def parse_selections(body: dict) -> list:
    raw = body.get("selections")
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Select at least one topic")
    try:
        return [QuizSelection(**item) for item in raw]
    except (TypeError, pydantic.ValidationError) as e:
        raise ValidationError("Each selection needs a subject_id and a positive question_count") from e


def _session(request: web.Request, user):
    return request.app[SESSIONS].get_session(request.match_info["session_id"], user.user_id)


@routes.get("/api/catalog")
async def get_catalog(request: web.Request):
    return web.json_response(catalog.as_tree())


@routes.post("/api/quiz/start")
async def start_quiz(request: web.Request):
    # Access is checked here only; a running quiz can always be finished
    user = await require_subscriber(request)
    body = await read_json(request)
    selections = parse_selections(body)
    logger.info(f"Quiz requested by {user.user_id}: {[s.subject_id for s in selections]}")

    session = await request.app[SESSIONS].start_session(request.app[DB], user.user_id, selections)
    return web.json_response(session.as_dict(), status=201)


@routes.get("/api/quiz/{session_id}")
async def get_quiz(request: web.Request):
    user = await current_user(request)
    return web.json_response(_session(request, user).as_dict())


@routes.post("/api/quiz/{session_id}/answer")
async def answer(request: web.Request):
    user = await current_user(request)
    session = _session(request, user)
    body = await read_json(request)

    is_correct = session.submit_answer(body.get("option_index"))
    state = session.as_dict()
    state["is_correct"] = is_correct
    return web.json_response(state)


@routes.post("/api/quiz/{session_id}/advance")
async def advance(request: web.Request):
    user = await current_user(request)
    session = _session(request, user)
    await session.advance()
    return web.json_response(session.as_dict())


@routes.post("/api/quiz/{session_id}/previous")
async def previous(request: web.Request):
    user = await current_user(request)
    session = _session(request, user)
    session.previous()
    return web.json_response(session.as_dict())


@routes.post("/api/quiz/{session_id}/complete")
async def complete(request: web.Request):
    user = await current_user(request)
    session = _session(request, user)
    await session.complete()
    return web.json_response(session.as_dict())


@routes.delete("/api/quiz/{session_id}")
async def discard(request: web.Request):
    user = await current_user(request)
    session = _session(request, user)
    request.app[SESSIONS].discard_session(session.session_id)
    return web.json_response({"discarded": session.session_id})
