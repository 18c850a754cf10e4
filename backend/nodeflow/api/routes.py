from fastapi import APIRouter
from .v1 import media, runs, workflows

api_router = APIRouter(prefix="/api", tags=["nodeflow"])

api_router.include_router(workflows.router, prefix="/v1", tags=["workflows"])
api_router.include_router(runs.router, prefix="/v1", tags=["runs"])
api_router.include_router(media.router, prefix="/v1", tags=["media"])


@api_router.get("/")
def read_root():
    return {"message": "Nodeflow API"}
