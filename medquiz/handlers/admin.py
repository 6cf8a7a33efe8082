import logging
from datetime import datetime

from aiohttp import WSMsgType, web

from medquiz.errors import BackendError, ValidationError
from medquiz.handlers.common import ADMIN, DB, LIVE_FEEDS, read_json, require_admin
from medquiz.services.admin_overview import filter_rows, summarize
from medquiz.services.question_ingestion import ingest_batch, parse_upload

logger = logging.getLogger(__name__)

routes = web.RouteTableDef()


def _overview_payload(rows, search: str = "", status: str = "all") -> dict:
    return {
        "rows": [r.model_dump(mode="json") for r in filter_rows(rows, search, status)],
        "stats": summarize(rows),
    }


@routes.get("/api/admin/subscriptions")
async def list_subscriptions(request: web.Request):
    await require_admin(request)
    rows = await request.app[ADMIN].list_all()
    return web.json_response(_overview_payload(
        rows,
        request.query.get("q", ""),
        request.query.get("status", "all"),
    ))


@routes.post("/api/admin/subscriptions/{user_id}")
async def update_subscription(request: web.Request):
    admin = await require_admin(request)
    body = await read_json(request)

    subscription_end = None
    if body.get("subscription_end"):
        try:
            subscription_end = datetime.fromisoformat(body["subscription_end"])
        except (TypeError, ValueError) as e:
            raise ValidationError("subscription_end must be an ISO timestamp") from e

    user_id = request.match_info["user_id"]
    row = await request.app[ADMIN].update_status(user_id, body.get("status"), subscription_end)
    logger.info(f"Admin {admin.email} set {user_id} to {body.get('status')}")
    return web.json_response({"subscription": row})


@routes.post("/api/admin/questions")
async def upload_questions(request: web.Request):
    """
    Accepts either a multipart form with a .json file, or a JSON body of
    {"questions": [...]} / {"content": "<pasted json>"}. Both take an
    optional target_block ("subject_id/block_id").
    """
    await require_admin(request)

    if request.content_type.startswith("multipart/"):
        form = await request.post()
        upload = form.get("file")
        if upload is None or not hasattr(upload, "file"):
            raise ValidationError("No file uploaded")
        records = parse_upload(upload.file.read(), upload.filename)
        target_block = form.get("target_block") or None
    else:
        body = await read_json(request)
        if "questions" in body:
            records = body["questions"]
        else:
            records = parse_upload(body.get("content") or "")
        target_block = body.get("target_block") or None

    report = await ingest_batch(request.app[DB], records, target_block)
    return web.json_response(report.as_dict())


@routes.get("/api/admin/live")
async def live_overview(request: web.Request):
    """
    Pushes the overview whenever subscriptions or profiles change.
    Sending "refresh" forces a re-read.
    """
    await require_admin(request)
    overview = request.app[ADMIN]

    rows = await overview.list_all()
    ws = web.WebSocketResponse()

    async def push(rows):
        if not ws.closed:
            await ws.send_json(_overview_payload(rows))

    live = overview.live(push)
    await live.start()
    request.app[LIVE_FEEDS].add(live)
    try:
        await ws.prepare(request)
        await push(rows)
        async for msg in ws:
            if msg.type == WSMsgType.TEXT and msg.data == "refresh":
                try:
                    await push(await overview.list_all())
                except BackendError as e:
                    if not ws.closed:
                        await ws.send_json({"error": e.message})
            elif msg.type == WSMsgType.ERROR:
                logger.warning(f"Admin live socket error: {ws.exception()}")
    finally:
        request.app[LIVE_FEEDS].discard(live)
        await live.stop()
    return ws
