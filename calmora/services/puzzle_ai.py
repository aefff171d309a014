# calmora/services/puzzle_ai.py
"""
Word puzzle: selección de palabra, rondas y respuestas, reporte de estrés
(Gemini), stats y logros.
"""
import json
import logging
import math
import random
import secrets
from datetime import date, timedelta

import httpx
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calmora.core.config import settings
from calmora.models.puzzle import (
    Difficulty, GameSession, StressLevel, StressReport, UserAchievement, UserGameStats,
)
from calmora.schemas.puzzle import GameSessionIn, PuzzleAnalysisIn, StressAnalysis
from calmora.services.ai_json import extract_json

logger = logging.getLogger(__name__)

PUZZLE_WORDS = [
    {"word": "CALM", "hint": "Peaceful state of mind", "difficulty": Difficulty.easy, "category": "mindfulness"},
    {"word": "PEACE", "hint": "Inner tranquility", "difficulty": Difficulty.easy, "category": "mindfulness"},
    {"word": "SMILE", "hint": "Expression of joy", "difficulty": Difficulty.easy, "category": "positivity"},
    {"word": "PAUSE", "hint": "Take a moment to stop", "difficulty": Difficulty.easy, "category": "mindfulness"},
    {"word": "RELAX", "hint": "To unwind and rest", "difficulty": Difficulty.medium, "category": "wellness"},
    {"word": "BREATHE", "hint": "Essential for mindfulness", "difficulty": Difficulty.medium, "category": "mindfulness"},
    {"word": "FOCUS", "hint": "Concentrate attention", "difficulty": Difficulty.medium, "category": "mindfulness"},
    {"word": "BALANCE", "hint": "Harmony in life", "difficulty": Difficulty.medium, "category": "wellness"},
    {"word": "GRATITUDE", "hint": "Thankful appreciation", "difficulty": Difficulty.hard, "category": "positivity"},
    {"word": "MEDITATION", "hint": "Mindful practice", "difficulty": Difficulty.hard, "category": "mindfulness"},
    {"word": "SERENITY", "hint": "Peaceful calmness", "difficulty": Difficulty.hard, "category": "wellness"},
    {"word": "MINDFULNESS", "hint": "Present moment awareness", "difficulty": Difficulty.hard, "category": "mindfulness"},
]

# id -> (nombre, descripción, ícono)
ACHIEVEMENTS = {
    "first_solve": ("First Puzzle", "Solved your first puzzle", "🎯"),
    "quick_thinker": ("Quick Thinker", "Solved puzzle in under 30 seconds", "⚡"),
    "mindful_solver": ("Mindful Solver", "Completed mindfulness category", "🧘"),
    "consistent_player": ("Consistent Player", "7-day streak achieved", "📅"),
    "stress_manager": ("Stress Manager", "Maintained low stress levels", "🌟"),
}

_sysrand = secrets.SystemRandom()


class AlreadySolved(Exception):
    pass

# ---------- puzzle ----------

def available_puzzles(total_solved: int) -> list[dict]:
    if total_solved < 3:
        return [p for p in PUZZLE_WORDS if p["difficulty"] == Difficulty.easy]
    if total_solved < 8:
        return [p for p in PUZZLE_WORDS if p["difficulty"] != Difficulty.hard]
    return list(PUZZLE_WORDS)

def scramble_word(word: str, rng: random.Random | None = None) -> str:
    rng = rng or _sysrand
    if len(set(word)) < 2:
        return word
    letters = list(word)
    while True:
        rng.shuffle(letters)
        scrambled = "".join(letters)
        if scrambled != word:
            return scrambled

def public_puzzle(p: dict, rng: random.Random | None = None) -> dict:
    # lo que ve el cliente: nunca la palabra
    return {
        "scrambled": scramble_word(p["word"], rng),
        "hint": p["hint"],
        "difficulty": p["difficulty"],
        "category": p["category"],
        "length": len(p["word"]),
    }

def next_puzzle(total_solved: int, rng: random.Random | None = None) -> dict:
    rng = rng or _sysrand
    return public_puzzle(rng.choice(available_puzzles(total_solved)), rng)

def check_answer(answer: str, word: str) -> bool:
    return answer.strip().upper() == word.upper()

async def start_round(
    db: AsyncSession, user_id: str, rng: random.Random | None = None
) -> tuple[GameSession, dict]:
    """Elige palabra según el progreso y abre una GameSession sin resolver."""
    rng = rng or _sysrand
    stats = await get_or_create_stats(db, user_id)
    p = rng.choice(available_puzzles(stats.total_puzzles_solved or 0))
    gs = GameSession(
        user_id=user_id, puzzle_word=p["word"], difficulty=p["difficulty"],
        category=p["category"], attempts=0, solved=False,
    )
    db.add(gs)
    await db.commit()
    await db.refresh(gs)
    return gs, {"session_id": gs.id, **public_puzzle(p, rng)}

async def submit_answer(
    db: AsyncSession, user_id: str, session_id: str, answer: str, time_taken: int
) -> tuple[GameSession, bool]:
    """
    Cuenta un intento sobre la ronda `session_id`. Si acierta, la marca
    resuelta con `time_taken`.
    LookupError si la ronda no es del usuario; AlreadySolved si ya se resolvió.
    """
    res = await db.execute(
        select(GameSession).where(GameSession.id == session_id, GameSession.user_id == user_id)
    )
    gs = res.scalar_one_or_none()
    if gs is None:
        raise LookupError("game session not found")
    if gs.solved:
        raise AlreadySolved(session_id)

    correct = check_answer(answer, gs.puzzle_word)
    gs.attempts = (gs.attempts or 0) + 1
    if correct:
        gs.solved = True
        gs.time_taken = time_taken
    await db.commit()
    await db.refresh(gs)
    return gs, correct

# ---------- stats ----------

async def get_or_create_stats(db: AsyncSession, user_id: str) -> UserGameStats:
    res = await db.execute(select(UserGameStats).where(UserGameStats.user_id == user_id))
    stats = res.scalar_one_or_none()
    if stats is None:
        stats = UserGameStats(
            user_id=user_id, current_streak=0, max_streak=0,
            total_puzzles_solved=0, average_solve_time=0.0, last_played_date=None,
        )
        db.add(stats)
        await db.flush()
    return stats

def apply_solve(stats: UserGameStats, time_taken: int, today: date) -> UserGameStats:
    if stats.last_played_date == today:
        streak = stats.current_streak or 1
    elif stats.last_played_date == today - timedelta(days=1):
        streak = (stats.current_streak or 0) + 1
    else:
        streak = 1
    solved = stats.total_puzzles_solved or 0
    stats.current_streak = streak
    stats.max_streak = max(stats.max_streak or 0, streak)
    stats.average_solve_time = ((stats.average_solve_time or 0.0) * solved + time_taken) / (solved + 1)
    stats.total_puzzles_solved = solved + 1
    stats.last_played_date = today
    return stats

# ---------- sessions ----------

async def record_session(db: AsyncSession, user_id: str, payload: GameSessionIn) -> GameSession:
    gs = GameSession(user_id=user_id, **payload.model_dump())
    gs.puzzle_word = gs.puzzle_word.upper()
    db.add(gs)
    await db.commit()
    await db.refresh(gs)
    return gs

async def recent_sessions(db: AsyncSession, user_id: str, limit: int = 10) -> list[GameSession]:
    res = await db.execute(
        select(GameSession)
        .where(GameSession.user_id == user_id)
        .order_by(GameSession.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())

# ---------- logros ----------

def earned_achievements(stats: UserGameStats, time_taken: int, attempts: int) -> list[str]:
    """Ids ganados con este solve; `stats` ya incluye el solve."""
    earned = []
    if stats.total_puzzles_solved == 1:
        earned.append("first_solve")
    if time_taken < 30 and attempts == 1:
        earned.append("quick_thinker")
    if (stats.current_streak or 0) >= 7:
        earned.append("consistent_player")
    return earned

async def unlock_achievements(db: AsyncSession, user_id: str, ids: list[str]) -> list[UserAchievement]:
    """Agrega los logros que el usuario no tenía. No hace commit."""
    res = await db.execute(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    )
    owned = set(res.scalars().all())
    unlocked = []
    for achievement_id in dict.fromkeys(ids):
        if achievement_id in owned or achievement_id not in ACHIEVEMENTS:
            continue
        name, description, icon = ACHIEVEMENTS[achievement_id]
        ach = UserAchievement(
            user_id=user_id, achievement_id=achievement_id, achievement_name=name,
            achievement_description=description, achievement_icon=icon,
        )
        db.add(ach)
        unlocked.append(ach)
    return unlocked

async def list_achievements(db: AsyncSession, user_id: str) -> list[UserAchievement]:
    res = await db.execute(
        select(UserAchievement)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.unlocked_at, UserAchievement.achievement_id)
    )
    return list(res.scalars().all())

# ---------- análisis ----------

def fallback_analysis(time_taken: int, attempts: int) -> StressAnalysis:
    if time_taken > 60:
        level = StressLevel.high
    elif time_taken > 30:
        level = StressLevel.moderate
    else:
        level = StressLevel.low
    return StressAnalysis(
        stress_level=level,
        coping_tip=("Take a deep breath and remember that every puzzle solved "
                    "is progress toward better mental wellness."),
        ai_analysis=("You're making great progress on your mindfulness journey! "
                     "Keep practicing and stay consistent."),
        suggested_badges=["first_solve"] if attempts == 1 else ["mindful_solver"],
        weekly_score=max(20, min(100, 100 - time_taken * 2 - attempts * 10)),
        fallback=True,
    )

def _text_or(value, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default

def coerce_analysis(data: dict | None, fallback: StressAnalysis) -> StressAnalysis:
    """Respuesta del modelo -> StressAnalysis; lo inválido se completa con el fallback."""
    if not isinstance(data, dict):
        return fallback

    level = data.get("stressLevel")
    if not isinstance(level, str) or level not in StressLevel.__members__:
        level = fallback.stress_level

    raw_badges = data.get("suggestedBadges")
    if not isinstance(raw_badges, list):
        raw_badges = []
    badges = [b for b in raw_badges if isinstance(b, str) and b in ACHIEVEMENTS]

    raw_score = data.get("weeklyScore")
    if isinstance(raw_score, bool):
        raw_score = None
    try:
        score = float(raw_score)
        score = int(score) if math.isfinite(score) else fallback.weekly_score
    except (TypeError, ValueError, OverflowError):
        score = fallback.weekly_score

    try:
        return StressAnalysis(
            stress_level=level,
            coping_tip=_text_or(data.get("copingTip"), fallback.coping_tip),
            ai_analysis=_text_or(data.get("aiAnalysis"), fallback.ai_analysis),
            suggested_badges=list(dict.fromkeys(badges)),
            weekly_score=max(0, min(100, score)),
        )
    except ValidationError:
        return fallback

def build_analysis_prompt(payload: PuzzleAnalysisIn, sessions: list[GameSession]) -> str:
    count = len(sessions)
    avg_time = sum(s.time_taken or 0 for s in sessions) / count if count else 0.0
    success_rate = (sum(1 for s in sessions if s.solved) / count * 100) if count else 0.0
    patterns = [
        {"difficulty": s.difficulty.value, "time_taken": s.time_taken,
         "attempts": s.attempts, "solved": s.solved}
        for s in sessions[:5]
    ]
    return f"""
    Analyze this user's word puzzle game performance and generate a personalized mental wellness stress report:

    Current Session:
    - Time taken: {payload.time_taken} seconds
    - Attempts: {payload.attempts}
    - Difficulty: {payload.difficulty.value}
    - Category: {payload.category}

    Recent Performance:
    - Average solving time: {avg_time:.1f} seconds
    - Success rate: {success_rate:.1f}%
    - Sessions played: {count}
    - Recent patterns: {json.dumps(patterns)}

    Based on this data, determine:
    1. Stress level (low/moderate/high) based on performance patterns, time pressure, and solving difficulty
    2. A personalized coping tip related to the stress level and game performance
    3. Brief encouraging analysis (2-3 sentences) about their mental wellness journey
    4. Which achievement badges they might have earned ({", ".join(ACHIEVEMENTS)})

    Respond with a JSON object containing:
    {{
      "stressLevel": "low|moderate|high",
      "copingTip": "specific actionable tip",
      "aiAnalysis": "encouraging analysis of their wellness journey",
      "suggestedBadges": ["badge_id1", "badge_id2"],
      "weeklyScore": number between 0-100
    }}
    """

async def request_gemini(prompt: str, transport: httpx.AsyncBaseTransport | None = None) -> dict | None:
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY not configured, using fallback analysis")
        return None
    url = f"{settings.GEMINI_URL}/{settings.GEMINI_MODEL}:generateContent"
    try:
        async with httpx.AsyncClient(transport=transport, timeout=settings.AI_TIMEOUT_SECONDS) as cx:
            r = await cx.post(
                url,
                params={"key": settings.GEMINI_API_KEY},
                json={"contents": [{"parts": [{"text": prompt}]}]},
            )
        r.raise_for_status()
        text = r.json()["candidates"][0]["content"]["parts"][0]["text"]
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
        logger.warning("Gemini analysis request failed: %r", exc)
        return None
    if not isinstance(text, str):
        logger.warning("Gemini reply without text, using fallback analysis")
        return None
    data = extract_json(text)
    if data is None:
        logger.warning("Gemini reply without JSON, using fallback analysis")
    return data

async def analyze_session(
    db: AsyncSession,
    user_id: str,
    payload: PuzzleAnalysisIn,
    today: date,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[StressReport, StressAnalysis, UserGameStats, list[UserAchievement]]:
    if payload.game_session_id:
        res = await db.execute(
            select(GameSession.id).where(
                GameSession.id == payload.game_session_id, GameSession.user_id == user_id
            )
        )
        if res.scalar_one_or_none() is None:
            raise LookupError("game session not found")

    sessions = await recent_sessions(db, user_id)
    fallback = fallback_analysis(payload.time_taken, payload.attempts)
    data = await request_gemini(build_analysis_prompt(payload, sessions), transport=transport)
    analysis = coerce_analysis(data, fallback)

    report = StressReport(
        user_id=user_id,
        stress_level=analysis.stress_level,
        weekly_score=analysis.weekly_score,
        coping_tip=analysis.coping_tip,
        ai_analysis=analysis.ai_analysis,
        badges=analysis.suggested_badges,
        fallback=analysis.fallback,
        game_session_id=payload.game_session_id,
    )
    db.add(report)
    stats = apply_solve(await get_or_create_stats(db, user_id), payload.time_taken, today)
    unlocked = await unlock_achievements(
        db, user_id, earned_achievements(stats, payload.time_taken, payload.attempts)
    )
    await db.commit()
    await db.refresh(report)
    await db.refresh(stats)
    for ach in unlocked:
        await db.refresh(ach)
    logger.info("stress report %s stored for user %s (fallback=%s, unlocked=%d)",
                report.id, user_id, analysis.fallback, len(unlocked))
    return report, analysis, stats, unlocked

async def list_reports(db: AsyncSession, user_id: str, limit: int = 5) -> list[StressReport]:
    res = await db.execute(
        select(StressReport)
        .where(StressReport.user_id == user_id)
        .order_by(StressReport.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())
