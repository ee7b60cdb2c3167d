# barberq/health.py
from fastapi import APIRouter

from barberq.config import get_settings

router = APIRouter()


@router.get("/health")
def health():
    settings = get_settings()
    return {"ok": True, "mock_data": settings.use_mock_data, "timezone": settings.timezone}
