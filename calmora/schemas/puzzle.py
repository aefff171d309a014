from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field

from calmora.models.puzzle import Difficulty, StressLevel

class PuzzleOut(BaseModel):
    session_id: str
    scrambled: str
    hint: str
    difficulty: Difficulty
    category: str
    length: int

class GameSessionIn(BaseModel):
    puzzle_word: str = Field(..., min_length=2, max_length=64)
    difficulty: Difficulty
    category: str = Field(..., min_length=1, max_length=64)
    time_taken: int | None = Field(None, ge=0)
    attempts: int = Field(0, ge=0)
    solved: bool = False

class AnswerIn(BaseModel):
    session_id: str
    answer: str = Field(..., min_length=1, max_length=64)
    time_taken: int = Field(..., ge=0)  # segundos desde /puzzle/next

class AnswerOut(BaseModel):
    session_id: str
    correct: bool
    attempts: int
    solved: bool
    # solo se revela una vez resuelto
    word: str | None = None

class GameSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    puzzle_word: str
    difficulty: Difficulty
    category: str
    time_taken: int | None
    attempts: int
    solved: bool
    created_at: datetime | None = None

class PuzzleAnalysisIn(BaseModel):
    game_session_id: str | None = None
    time_taken: int = Field(..., ge=0)
    attempts: int = Field(..., ge=1)
    difficulty: Difficulty
    category: str

class StressAnalysis(BaseModel):
    stress_level: StressLevel
    coping_tip: str
    ai_analysis: str
    suggested_badges: list[str] = []
    weekly_score: int = Field(..., ge=0, le=100)
    fallback: bool = False

class StressReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    stress_level: StressLevel
    weekly_score: int
    coping_tip: str
    ai_analysis: str | None
    badges: list[str]
    game_session_id: str | None
    created_at: datetime | None = None

class GameStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_streak: int
    max_streak: int
    total_puzzles_solved: int
    average_solve_time: float
    last_played_date: date | None

class AchievementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    achievement_id: str
    achievement_name: str
    achievement_description: str
    achievement_icon: str
    unlocked_at: datetime | None = None

class PuzzleAnalysisOut(BaseModel):
    success: bool = True
    report: StressReportOut
    analysis: StressAnalysis
    stats: GameStatsOut
    new_achievements: list[AchievementOut] = []
