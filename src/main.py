import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from database import init_db
from rotation.errors import RotationError
from rotation.router import router as rotation_router, rotation_error_handler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Court Rotation Queue", lifespan=lifespan)
app.include_router(rotation_router)
app.add_exception_handler(RotationError, rotation_error_handler)


@app.get("/")
async def index():
    return {"message": "Court Rotation Queue", "status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
