import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderdesk.config import Settings
from orderdesk.database import Base, build_engine, build_session_factory
from orderdesk.errors import OrderdeskError
from orderdesk.gateway import StripeGateway
from orderdesk.routes import router


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrderdeskError)
    async def orderdesk_error(request: Request, exc: OrderdeskError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"] if part != "body")
        return JSONResponse(status_code=400, content={"error": f"{field}: {first['msg']}"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the service; run with ``uvicorn --factory orderdesk.main:create_app``."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    app = FastAPI(title="Orderdesk Order & Refund Service")

    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.gateway = StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)

    app.include_router(router)
    register_error_handlers(app)
    return app
