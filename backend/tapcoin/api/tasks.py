"""Tasks API."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import User
from ..schemas import TaskCheckRequest, TaskCheckResponse, TasksResponse
from ..services.economy import EconomyEngine, get_engine
from .auth import get_current_user


router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=TasksResponse)
async def get_tasks(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    return await engine.list_tasks(db, user.telegram_id)


@router.post("/check", response_model=TaskCheckResponse)
async def check_task(
    request: TaskCheckRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: EconomyEngine = Depends(get_engine),
):
    """Проверить подписку на канал и выдать награду за задание."""
    return await engine.complete_task(db, user.telegram_id, request.task_id)
