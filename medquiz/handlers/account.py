from aiohttp import web

from medquiz.handlers.common import ACCOUNTS, current_user, read_json

routes = web.RouteTableDef()


@routes.post("/api/auth/signup")
async def signup(request: web.Request):
    body = await read_json(request)
    user = await request.app[ACCOUNTS].signup(
        name=body.get("name"),
        email=body.get("email"),
        password=body.get("password"),
        confirm_password=body.get("confirm_password"),
        matric_number=body.get("matric_number"),
    )
    return web.json_response({"user": user}, status=201)


@routes.post("/api/auth/login")
async def login(request: web.Request):
    body = await read_json(request)
    session = await request.app[ACCOUNTS].login(body.get("email"), body.get("password"))
    return web.json_response({"access_token": session.access_token, "user": session.as_dict()})


@routes.get("/api/me")
async def me(request: web.Request):
    user = await current_user(request)
    return web.json_response(user.as_dict())


@routes.get("/api/history/quizzes")
async def quiz_history(request: web.Request):
    user = await current_user(request)
    return web.json_response(await request.app[ACCOUNTS].quiz_history(user.user_id))


@routes.get("/api/history/billing")
async def billing_history(request: web.Request):
    user = await current_user(request)
    return web.json_response(await request.app[ACCOUNTS].billing_history(user.user_id))
