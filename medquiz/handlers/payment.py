from aiohttp import web

from medquiz.handlers.common import ACCOUNTS, PAYMENTS, current_user, read_json

routes = web.RouteTableDef()


@routes.post("/api/payment/initialize")
async def initialize_payment(request: web.Request):
    user = await current_user(request)
    body = await read_json(request)
    checkout = await request.app[PAYMENTS].initialize(
        user.user_id,
        user.email,
        callback_url=body.get("callback_url"),
    )
    return web.json_response(checkout)


@routes.post("/api/payment/verify")
async def verify_payment(request: web.Request):
    """
    Called from the payment-success page with the gateway reference.
    """
    user = await current_user(request)
    body = await read_json(request)
    outcome = await request.app[PAYMENTS].verify_and_activate(user.user_id, body.get("reference"))

    state = await user.refresh(request.app[ACCOUNTS].resolver)
    outcome["status"] = state.as_dict()
    return web.json_response(outcome)
