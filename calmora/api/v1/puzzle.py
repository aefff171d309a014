from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from calmora.api.deps import get_current_user
from calmora.core.db import get_db
from calmora.models.user import User
from calmora.schemas.puzzle import (
    PuzzleOut, AnswerIn, AnswerOut, GameSessionIn, GameSessionOut, PuzzleAnalysisIn,
    PuzzleAnalysisOut, StressReportOut, GameStatsOut, AchievementOut,
)
from calmora.services import puzzle_ai

router = APIRouter(prefix="/puzzle", tags=["puzzle"])

@router.get("/next", response_model=PuzzleOut)
async def next_puzzle(current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    _, puzzle = await puzzle_ai.start_round(db, current.id)
    return puzzle

@router.post("/answer", response_model=AnswerOut)
async def answer(
    payload: AnswerIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        gs, correct = await puzzle_ai.submit_answer(
            db, current.id, payload.session_id, payload.answer, payload.time_taken
        )
    except LookupError:
        raise HTTPException(status_code=404, detail="Game session not found")
    except puzzle_ai.AlreadySolved:
        raise HTTPException(status_code=409, detail="Puzzle already solved")
    return AnswerOut(
        session_id=gs.id,
        correct=correct,
        attempts=gs.attempts,
        solved=gs.solved,
        word=gs.puzzle_word if gs.solved else None,
    )

@router.post("/sessions", response_model=GameSessionOut, status_code=201)
async def create_session(
    payload: GameSessionIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await puzzle_ai.record_session(db, current.id, payload)

@router.post("/analysis", response_model=PuzzleAnalysisOut)
async def analyze(
    payload: PuzzleAnalysisIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        report, analysis, stats, unlocked = await puzzle_ai.analyze_session(
            db, current.id, payload, today=datetime.now(timezone.utc).date()
        )
    except LookupError:
        raise HTTPException(status_code=404, detail="Game session not found")
    return PuzzleAnalysisOut(
        report=StressReportOut.model_validate(report),
        analysis=analysis,
        stats=GameStatsOut.model_validate(stats),
        new_achievements=[AchievementOut.model_validate(a) for a in unlocked],
    )

@router.get("/stats", response_model=GameStatsOut)
async def my_stats(current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    stats = await puzzle_ai.get_or_create_stats(db, current.id)
    await db.commit()
    return stats

@router.get("/reports", response_model=list[StressReportOut])
async def my_reports(
    limit: int = Query(5, ge=1, le=50),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await puzzle_ai.list_reports(db, current.id, limit=limit)

@router.get("/achievements", response_model=list[AchievementOut])
async def my_achievements(current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await puzzle_ai.list_achievements(db, current.id)
