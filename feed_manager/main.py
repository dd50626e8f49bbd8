import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from feed_manager.api.feed import router as feed_router
from feed_manager.domain.errors import FeedManagerError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Package Feed Manager",
    version="0.1.0",
    description="Browse, push and delete packages on a NuGet v3 compatible feed.",
)


@app.exception_handler(FeedManagerError)
async def feed_manager_error_handler(request: Request, exc: FeedManagerError) -> JSONResponse:
    """
    Render any feed manager error as JSON with its own status code.
    """
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(feed_router, prefix="/api", tags=["feed"])


if __name__ == "__main__":
    """
    Allow running `python -m feed_manager.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "feed_manager.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
