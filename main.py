import asyncio
import logging

from aiohttp import web
from dotenv import load_dotenv

from database.db_client import SupabaseClient
from medquiz.config import Config
from medquiz.errors import MedQuizError
from medquiz.handlers.account import routes as account_routes
from medquiz.handlers.admin import routes as admin_routes
from medquiz.handlers.common import ACCOUNTS, ADMIN, DB, LIVE_FEEDS, PAYMENTS, SESSIONS
from medquiz.handlers.payment import routes as payment_routes
from medquiz.handlers.quiz import routes as quiz_routes
from medquiz.services.account_service import AccountService
from medquiz.services.admin_overview import AdminOverview
from medquiz.services.payment_service import PaymentService, PaystackClient
from medquiz.services.session_manager import SessionManager

# Load environment variables
load_dotenv()

# Logger setup
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        return web.Response(headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as e:
        # Routing errors (404, 405) arrive as exceptions
        e.headers.update(CORS_HEADERS)
        raise
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request, handler):
    try:
        return await handler(request)
    except MedQuizError as e:
        if e.status >= 500:
            logger.error(f"API Error on {request.path}: {e.message}")
        else:
            logger.info(f"Rejected {request.method} {request.path}: {e.message}")
        return web.json_response({"error": e.message}, status=e.status)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"API Error on {request.path}: {e}")
        return web.json_response({"error": "Internal Server Error"}, status=500)


async def health_check(request):
    return web.Response(text="MedQuiz API is alive!")


async def _shutdown_background_tasks(app):
    for live in list(app[LIVE_FEEDS]):
        await live.stop()
    app[LIVE_FEEDS].clear()
    await app[SESSIONS].shutdown()


def create_app(db, payments: PaymentService = None, session_manager: SessionManager = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[DB] = db
    app[ACCOUNTS] = AccountService(db)
    app[PAYMENTS] = payments or PaymentService(db, PaystackClient())
    app[SESSIONS] = session_manager or SessionManager()
    app[ADMIN] = AdminOverview(db)
    app[LIVE_FEEDS] = set()

    app.router.add_get("/", health_check)
    app.add_routes(account_routes)
    app.add_routes(quiz_routes)
    app.add_routes(payment_routes)
    app.add_routes(admin_routes)
    app.on_cleanup.append(_shutdown_background_tasks)
    return app


async def start_web_server(app: web.Application):
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", Config.PORT)
    await site.start()
    logger.info(f"Web server started on port {Config.PORT}")
    return runner


# --- Main Entry Point ---
async def main():
    logger.info("Starting MedQuiz API...")

    db = SupabaseClient()
    connected = await db.connect()
    if not connected:
        logger.error("Failed to connect to Supabase. Check credentials.")

    runner = await start_web_server(create_app(db))
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped by user.")
