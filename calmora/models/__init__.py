from calmora.models.user import User
from calmora.models.two_factor import TwoFactorRecord, TwoFactorState
from calmora.models.recovery_code import RecoveryCode
from calmora.models.puzzle import GameSession, StressReport, UserGameStats, UserAchievement
