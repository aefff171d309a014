from pydantic import BaseModel, Field

class MoodAnalysisIn(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)
    context: str | None = Field(None, max_length=500)

class MoodAnalysisOut(BaseModel):
    mood: str
    confidence: int = Field(..., ge=0, le=100)
    descriptors: list[str] = []
    supportive_message: str
    secondary_emotions: list[str] = []
    fallback: bool = False
