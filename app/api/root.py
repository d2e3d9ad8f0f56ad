from fastapi import APIRouter

router = APIRouter()


@router.get("/")
def root():
    return {
        "name": "Review Cycle Manager",
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
    }
