"""Tests for the word puzzle, stress reports and game stats."""
import json
import random
from datetime import date

import httpx
import pytest

from calmora.core.config import settings
from calmora.models.puzzle import Difficulty, GameSession, StressLevel, UserGameStats
from calmora.schemas.puzzle import GameSessionIn, PuzzleAnalysisIn
from calmora.services import puzzle_ai

TODAY = date(2026, 10, 17)


def _gemini_reply(text: str) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["key"] == "g-test"
        assert "generateContent" in request.url.path
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})
    return httpx.MockTransport(handler)


class TestPuzzleSelection:
    @pytest.mark.parametrize("solved, allowed", [
        (0, {Difficulty.easy}),
        (2, {Difficulty.easy}),
        (3, {Difficulty.easy, Difficulty.medium}),
        (7, {Difficulty.easy, Difficulty.medium}),
        (8, {Difficulty.easy, Difficulty.medium, Difficulty.hard}),
    ])
    def test_adaptive_difficulty(self, solved, allowed):
        assert {p["difficulty"] for p in puzzle_ai.available_puzzles(solved)} == allowed

    def test_scramble_is_permutation_and_differs(self):
        rng = random.Random(7)
        for p in puzzle_ai.PUZZLE_WORDS:
            s = puzzle_ai.scramble_word(p["word"], rng)
            assert s != p["word"]
            assert sorted(s) == sorted(p["word"])

    def test_next_puzzle_hides_word(self):
        p = puzzle_ai.next_puzzle(0, random.Random(1))
        assert "word" not in p
        assert p["difficulty"] == Difficulty.easy
        assert p["length"] == len(p["scrambled"])

    def test_check_answer(self):
        assert puzzle_ai.check_answer(" calm ", "CALM")
        assert not puzzle_ai.check_answer("clam", "CALM")


class TestFallbackAnalysis:
    @pytest.mark.parametrize("time_taken, level", [(10, StressLevel.low), (31, StressLevel.moderate), (61, StressLevel.high)])
    def test_levels(self, time_taken, level):
        assert puzzle_ai.fallback_analysis(time_taken, 2).stress_level == level

    def test_badges_and_score(self):
        first = puzzle_ai.fallback_analysis(10, 1)
        assert first.suggested_badges == ["first_solve"]
        assert first.weekly_score == 70
        assert puzzle_ai.fallback_analysis(10, 3).suggested_badges == ["mindful_solver"]
        assert puzzle_ai.fallback_analysis(100, 9).weekly_score == 20

    def test_coerce_drops_unknown_values(self):
        fb = puzzle_ai.fallback_analysis(40, 2)
        out = puzzle_ai.coerce_analysis(
            {"stressLevel": "extreme", "copingTip": "Walk.", "suggestedBadges": ["quick_thinker", "nope"],
             "weeklyScore": 140},
            fb,
        )
        assert out.stress_level == fb.stress_level
        assert out.coping_tip == "Walk."
        assert out.ai_analysis == fb.ai_analysis
        assert out.suggested_badges == ["quick_thinker"]
        assert out.weekly_score == 100
        assert out.fallback is False


    @pytest.mark.parametrize("reply", [
        {"weeklyScore": float("inf")},
        {"weeklyScore": "1e999"},
        {"weeklyScore": "lots"},
        {"weeklyScore": True},
        {"stressLevel": ["low"]},
        {"stressLevel": {"level": "low"}},
        {"suggestedBadges": [["first_solve"]]},
        {"suggestedBadges": 5},
        {"suggestedBadges": "first_solve"},
        {"copingTip": ["breathe"], "aiAnalysis": 42},
    ])
    def test_coerce_survives_malformed_replies(self, reply):
        fb = puzzle_ai.fallback_analysis(20, 1)
        out = puzzle_ai.coerce_analysis(reply, fb)
        assert out.stress_level == fb.stress_level
        assert 0 <= out.weekly_score <= 100
        assert all(b in puzzle_ai.ACHIEVEMENTS for b in out.suggested_badges)
        assert out.coping_tip and out.ai_analysis

    def test_coerce_non_dict(self):
        fb = puzzle_ai.fallback_analysis(20, 1)
        assert puzzle_ai.coerce_analysis(None, fb) is fb
        assert puzzle_ai.coerce_analysis(["low"], fb) is fb


class TestStats:
    def _stats(self, **kw):
        base = dict(user_id="u", current_streak=0, max_streak=0, total_puzzles_solved=0,
                    average_solve_time=0.0, last_played_date=None)
        base.update(kw)
        return UserGameStats(**base)

    def test_first_solve(self):
        s = puzzle_ai.apply_solve(self._stats(), 20, TODAY)
        assert (s.current_streak, s.max_streak, s.total_puzzles_solved) == (1, 1, 1)
        assert s.average_solve_time == 20
        assert s.last_played_date == TODAY

    def test_same_day_keeps_streak(self):
        s = puzzle_ai.apply_solve(self._stats(current_streak=3, max_streak=3, total_puzzles_solved=1,
                                              average_solve_time=10.0, last_played_date=TODAY), 30, TODAY)
        assert s.current_streak == 3
        assert s.average_solve_time == 20

    def test_consecutive_day_increments(self):
        s = puzzle_ai.apply_solve(self._stats(current_streak=3, max_streak=5,
                                              last_played_date=date(2026, 10, 16)), 30, TODAY)
        assert (s.current_streak, s.max_streak) == (4, 5)

    def test_gap_resets(self):
        s = puzzle_ai.apply_solve(self._stats(current_streak=6, max_streak=6,
                                              last_played_date=date(2026, 10, 10)), 30, TODAY)
        assert (s.current_streak, s.max_streak) == (1, 6)


class TestAnalyzeSession:
    async def test_gemini_result_is_stored(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", "g-test")
        gs = await puzzle_ai.record_session(db, user.id, GameSessionIn(
            puzzle_word="calm", difficulty="easy", category="mindfulness",
            time_taken=12, attempts=1, solved=True,
        ))
        reply = "Report:\n" + json.dumps({
            "stressLevel": "low", "copingTip": "Keep a steady breath.",
            "aiAnalysis": "Focused and calm.", "suggestedBadges": ["first_solve", "quick_thinker"],
            "weeklyScore": 88,
        })
        payload = PuzzleAnalysisIn(game_session_id=gs.id, time_taken=12, attempts=1,
                                   difficulty="easy", category="mindfulness")
        report, analysis, stats, unlocked = await puzzle_ai.analyze_session(
            db, user.id, payload, TODAY, transport=_gemini_reply(reply))

        assert report.stress_level == StressLevel.low
        assert report.weekly_score == 88
        assert report.badges == ["first_solve", "quick_thinker"]
        assert report.game_session_id == gs.id
        assert analysis.fallback is False
        assert stats.total_puzzles_solved == 1
        assert stats.current_streak == 1
        assert sorted(a.achievement_id for a in unlocked) == ["first_solve", "quick_thinker"]

    async def test_no_key_uses_fallback(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        payload = PuzzleAnalysisIn(time_taken=45, attempts=2, difficulty="medium", category="wellness")
        report, analysis, _, _ = await puzzle_ai.analyze_session(db, user.id, payload, TODAY)
        assert analysis.fallback is True
        assert report.stress_level == StressLevel.moderate
        assert report.fallback is True

    async def test_overflowing_gemini_score_uses_fallback(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", "g-test")
        reply = '{"stressLevel": ["high"], "weeklyScore": 1e999, "suggestedBadges": 5}'
        payload = PuzzleAnalysisIn(time_taken=20, attempts=1, difficulty="easy", category="mindfulness")
        report, analysis, _, _ = await puzzle_ai.analyze_session(
            db, user.id, payload, TODAY, transport=_gemini_reply(reply))
        fb = puzzle_ai.fallback_analysis(20, 1)
        assert report.stress_level == fb.stress_level
        assert report.weekly_score == fb.weekly_score
        assert report.badges == []

    async def test_foreign_session_rejected(self, db, user):
        payload = PuzzleAnalysisIn(game_session_id="not-mine", time_taken=5, attempts=1,
                                   difficulty="easy", category="mindfulness")
        with pytest.raises(LookupError):
            await puzzle_ai.analyze_session(db, user.id, payload, TODAY)


class TestPuzzleEndpoints:
    async def test_session_analysis_stats_reports(self, client, register_and_login, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        headers = await register_and_login()

        r = await client.get("/puzzle/next", headers=headers)
        assert r.status_code == 200
        assert r.json()["difficulty"] == "easy"

        r = await client.post("/puzzle/sessions", headers=headers, json={
            "puzzle_word": "peace", "difficulty": "easy", "category": "mindfulness",
            "time_taken": 25, "attempts": 1, "solved": True,
        })
        assert r.status_code == 201
        session_id = r.json()["id"]
        assert r.json()["puzzle_word"] == "PEACE"

        r = await client.post("/puzzle/analysis", headers=headers, json={
            "game_session_id": session_id, "time_taken": 25, "attempts": 1,
            "difficulty": "easy", "category": "mindfulness",
        })
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["success"] is True
        assert body["report"]["stress_level"] == "low"
        assert body["stats"]["total_puzzles_solved"] == 1

        r = await client.get("/puzzle/stats", headers=headers)
        assert r.json()["current_streak"] == 1

        r = await client.get("/puzzle/reports", headers=headers)
        assert len(r.json()) == 1

    async def test_unknown_session_404(self, client, register_and_login):
        headers = await register_and_login()
        r = await client.post("/puzzle/analysis", headers=headers, json={
            "game_session_id": "missing", "time_taken": 5, "attempts": 1,
            "difficulty": "easy", "category": "mindfulness",
        })
        assert r.status_code == 404


class TestRounds:
    async def test_round_hides_word_until_solved(self, db, user):
        gs, puzzle = await puzzle_ai.start_round(db, user.id, random.Random(3))
        assert puzzle["session_id"] == gs.id
        assert "word" not in puzzle
        assert sorted(puzzle["scrambled"]) == sorted(gs.puzzle_word)
        assert gs.solved is False and gs.attempts == 0
        assert gs.difficulty == Difficulty.easy

    async def test_wrong_then_right_answer(self, db, user):
        gs, _ = await puzzle_ai.start_round(db, user.id, random.Random(3))
        word = gs.puzzle_word

        gs, correct = await puzzle_ai.submit_answer(db, user.id, gs.id, "nope", 5)
        assert not correct
        assert (gs.attempts, gs.solved, gs.time_taken) == (1, False, None)

        gs, correct = await puzzle_ai.submit_answer(db, user.id, gs.id, f" {word.lower()} ", 14)
        assert correct
        assert (gs.attempts, gs.solved, gs.time_taken) == (2, True, 14)

        with pytest.raises(puzzle_ai.AlreadySolved):
            await puzzle_ai.submit_answer(db, user.id, gs.id, word, 20)

    async def test_foreign_round_rejected(self, db, user):
        with pytest.raises(LookupError):
            await puzzle_ai.submit_answer(db, user.id, "not-mine", "CALM", 5)


class TestAchievements:
    def _stats(self, **kw):
        base = dict(user_id="u", current_streak=1, max_streak=1, total_puzzles_solved=1,
                    average_solve_time=0.0, last_played_date=TODAY)
        base.update(kw)
        return UserGameStats(**base)

    @pytest.mark.parametrize("stats_kw, time_taken, attempts, expected", [
        ({}, 40, 2, ["first_solve"]),
        ({}, 29, 1, ["first_solve", "quick_thinker"]),
        ({"total_puzzles_solved": 4}, 30, 1, []),
        ({"total_puzzles_solved": 4}, 10, 2, []),
        ({"total_puzzles_solved": 9, "current_streak": 7}, 50, 3, ["consistent_player"]),
    ])
    def test_unlock_rules(self, stats_kw, time_taken, attempts, expected):
        stats = self._stats(**stats_kw)
        assert puzzle_ai.earned_achievements(stats, time_taken, attempts) == expected

    async def test_each_achievement_unlocks_once(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        payload = PuzzleAnalysisIn(time_taken=12, attempts=1, difficulty="easy", category="mindfulness")

        _, _, _, first = await puzzle_ai.analyze_session(db, user.id, payload, TODAY)
        assert sorted(a.achievement_id for a in first) == ["first_solve", "quick_thinker"]
        assert first[0].unlocked_at is not None

        _, _, _, second = await puzzle_ai.analyze_session(db, user.id, payload, TODAY)
        assert second == []

        owned = await puzzle_ai.list_achievements(db, user.id)
        assert sorted(a.achievement_id for a in owned) == ["first_solve", "quick_thinker"]
        quick = next(a for a in owned if a.achievement_id == "quick_thinker")
        assert quick.achievement_name == "Quick Thinker"

    async def test_week_streak_unlocks_consistent_player(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        stats = await puzzle_ai.get_or_create_stats(db, user.id)
        stats.current_streak, stats.max_streak = 6, 6
        stats.total_puzzles_solved = 12
        stats.last_played_date = date(2026, 10, 16)
        await db.commit()

        payload = PuzzleAnalysisIn(time_taken=45, attempts=2, difficulty="hard", category="wellness")
        _, _, stats, unlocked = await puzzle_ai.analyze_session(db, user.id, payload, TODAY)
        assert stats.current_streak == 7
        assert [a.achievement_id for a in unlocked] == ["consistent_player"]


class TestGameFlowEndpoints:
    async def test_play_answer_analyze(self, client, register_and_login, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        headers = await register_and_login()

        r = await client.get("/puzzle/next", headers=headers)
        assert r.status_code == 200
        puzzle = r.json()
        assert "word" not in puzzle
        session_id = puzzle["session_id"]

        async with session_factory() as s:
            word = (await s.get(GameSession, session_id)).puzzle_word

        r = await client.post("/puzzle/answer", headers=headers,
                              json={"session_id": session_id, "answer": "wrong", "time_taken": 4})
        assert r.json() == {"session_id": session_id, "correct": False, "attempts": 1,
                            "solved": False, "word": None}

        r = await client.post("/puzzle/answer", headers=headers,
                              json={"session_id": session_id, "answer": word.lower(), "time_taken": 18})
        body = r.json()
        assert body["correct"] is True and body["solved"] is True
        assert body["word"] == word

        r = await client.post("/puzzle/answer", headers=headers,
                              json={"session_id": session_id, "answer": word, "time_taken": 20})
        assert r.status_code == 409

        r = await client.post("/puzzle/analysis", headers=headers, json={
            "game_session_id": session_id, "time_taken": 18, "attempts": 2,
            "difficulty": puzzle["difficulty"], "category": puzzle["category"],
        })
        assert r.status_code == 200, r.text
        assert [a["achievement_id"] for a in r.json()["new_achievements"]] == ["first_solve"]

        r = await client.get("/puzzle/achievements", headers=headers)
        assert [a["achievement_id"] for a in r.json()] == ["first_solve"]
        assert r.json()[0]["achievement_icon"]

    async def test_answer_unknown_round_404(self, client, register_and_login):
        headers = await register_and_login()
        r = await client.post("/puzzle/answer", headers=headers,
                              json={"session_id": "missing", "answer": "calm", "time_taken": 3})
        assert r.status_code == 404
