from fastapi import FastAPI

from loreseek.api.routes_retrieve import router as retrieve_router
from loreseek.core.config import settings
from loreseek.core.logger import setup_logging

setup_logging(settings.log_level)

app = FastAPI(title="loreseek hybrid lore retrieval")

app.include_router(retrieve_router)
