import logging

from utils.env import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from blacksheep import Application
from rodi import Container

import controllers.generate  # noqa: F401  registers the Generate routes
from services.gemini_service import GeminiService
from services.generation_service import GenerationService
from services.media_fetcher import MediaFetcher
from services.post_processor import PostProcessor
from services.upload_manager import UploadManager


def _generation_service() -> GenerationService:
    return GenerationService(
        gemini_service=GeminiService(),
        media_fetcher=MediaFetcher(),
        post_processor=PostProcessor(),
        upload_manager=UploadManager(),
    )


services = Container()
services.add_singleton_by_factory(_generation_service)

app = Application(services=services)

app.use_cors(
    allow_methods="*",
    allow_origins="*",
    allow_headers="*",
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
