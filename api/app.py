"""
ImageGuard API

FastAPI application that:
1. Serves protected, watermarked images at /protected/image/{token}
2. Exposes the watermark admin endpoints under /api/watermark
3. Starts and stops the generation workers with the application
"""

import logging
import sys
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from api.admin import get_guard, router as admin_router
from imageguard import __version__
from imageguard.bootstrap import ImageGuard
from imageguard.config import get_config
from imageguard.delivery import PROTECTED_ROUTE, DeliveryRequest


# Configure logging to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("PIL").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(guard: Optional[ImageGuard] = None, start_workers: bool = True) -> FastAPI:
    """
    Build the application.

    Without a guard, one is built from the environment at startup.
    """
    app = FastAPI(
        title="ImageGuard",
        description="Watermark artifact cache and protected image delivery",
        version=__version__,
    )
    app.state.guard = guard
    app.include_router(admin_router)

    @app.on_event("startup")
    def startup_event():
        if app.state.guard is None:
            config = get_config()
            logging.getLogger().setLevel(config.log_level.upper())
            app.state.guard = ImageGuard.build(config)
        if start_workers:
            app.state.guard.start()

    @app.on_event("shutdown")
    def shutdown_event():
        if app.state.guard is not None:
            app.state.guard.shutdown()

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "version": __version__}

    @app.get(PROTECTED_ROUTE + "/{token}")
    def protected_image(
        token: str,
        request: Request,
        w: Optional[int] = Query(None, description="Target render width"),
        h: Optional[int] = Query(None, description="Target render height"),
        guard: ImageGuard = Depends(get_guard),
    ):
        """Serve a watermarked image for a signed token."""
        delivery = DeliveryRequest(
            token=token,
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
            if_none_match=request.headers.get("if-none-match"),
            client_ip=request.client.host if request.client else None,
            host=request.headers.get("host"),
            width=w,
            height=h,
            range_header=request.headers.get("range"),
        )
        result = guard.gateway.handle(delivery)

        if result.status_code >= 400:
            return JSONResponse(
                status_code=result.status_code,
                content={"detail": result.reason},
                headers=result.headers,
            )

        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
            media_type=result.content_type,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
