import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from streamflow_proxy.configs import settings
from streamflow_proxy.middleware import DocsAccessControlMiddleware
from streamflow_proxy.routes import extractor_router, proxy_router, streaming_router
from streamflow_proxy.utils.http_utils import create_httpx_client

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http_client = create_httpx_client()
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(DocsAccessControlMiddleware)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(proxy_router, prefix="/proxy", tags=["proxy"])
app.include_router(extractor_router, prefix="/extractor", tags=["extractors"])
app.include_router(streaming_router, prefix="/streaming", tags=["streaming"])


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8888, log_level="info")


if __name__ == "__main__":
    run()
