from fastapi import APIRouter, Depends

from calmora.api.deps import get_current_user
from calmora.models.user import User
from calmora.schemas.mood import MoodAnalysisIn, MoodAnalysisOut
from calmora.services.mood_ai import analyze_mood

router = APIRouter(prefix="/ai", tags=["ai"])

@router.post("/mood", response_model=MoodAnalysisOut)
async def mood_analysis(payload: MoodAnalysisIn, current: User = Depends(get_current_user)):
    # nunca 5xx por el proveedor: analyze_mood devuelve fallback
    return await analyze_mood(payload.text, payload.context)
