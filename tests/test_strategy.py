"""Tests for skill tiers, bot players and full-game simulation."""

from __future__ import annotations

import random

import pytest

from conftest import A, B, C, D, E, F
from errors import ContractError
from mastermind_env import (
    AttemptRecord,
    DuplicatePolicy,
    Feedback,
    RoundRules,
    RoundStatus,
    evaluate,
    generate_secret,
)
from strategies import strategy_for_level
from strategy import (
    BOT_NAMES,
    DecisionSource,
    GameConfig,
    SkilledBot,
    SkillTier,
    create_bot,
    eliminated_symbols,
    is_legal_guess,
    random_code,
    simulate_game,
    skill_tier,
    think_time,
)


def _bot(tier: SkillTier, seed: int = 0, index: int = 0) -> SkilledBot:
    return SkilledBot(
        create_bot(index, tier, token="t"),
        strategy_for_level(tier.level)(),
        random.Random(seed),
    )


class TestSkillTiers:
    @pytest.mark.parametrize("iq, rate, level", [
        (80, 0.30, 1), (90, 0.20, 2), (100, 0.10, 3), (110, 0.05, 4),
    ])
    def test_table(self, iq, rate, level) -> None:
        tier = skill_tier(iq)
        assert tier.error_rate == rate
        assert tier.level == level

    def test_unknown_tier(self) -> None:
        with pytest.raises(ContractError, match="unknown skill tier"):
            skill_tier(95)

    def test_think_time_bounds(self) -> None:
        rng = random.Random(5)
        slow, fast = skill_tier(80), skill_tier(110)
        for _ in range(500):
            assert 3.4 <= think_time(slow, rng) < 8.4
            assert 2.8 <= think_time(fast, rng) < 7.8


class TestBotRoster:
    def test_first_bots_use_roster_names(self) -> None:
        bot = create_bot(2, skill_tier(80), token="abc")
        assert bot.display_name == BOT_NAMES[2]
        assert bot.id == "bot-2-abc"

    def test_names_get_suffix_after_wrap(self) -> None:
        bot = create_bot(17, skill_tier(80), token="abc")
        assert bot.display_name == f"{BOT_NAMES[1]}17"

    def test_ids_unique_without_token(self) -> None:
        ids = {create_bot(0, skill_tier(80)).id for _ in range(20)}
        assert len(ids) == 20


class TestHelpers:
    def test_eliminated_symbols(self) -> None:
        history = [
            AttemptRecord((A, B, C, D), Feedback(0, 0)),
            AttemptRecord((E, F, A, B), Feedback(1, 0)),
        ]
        assert eliminated_symbols(history) == {A, B, C, D}

    def test_random_code_tops_up_small_pool(self) -> None:
        code = random_code([E, F], GameConfig(), random.Random(1))
        assert is_legal_guess(code, GameConfig())
        assert {E, F} <= set(code)

    def test_is_legal_guess(self) -> None:
        cfg = GameConfig()
        assert is_legal_guess((A, B, C, D), cfg)
        assert not is_legal_guess((A, A, C, D), cfg)
        assert is_legal_guess((A, A, C, D), GameConfig(policy=DuplicatePolicy.ALLOW))
        assert not is_legal_guess((A, B, C), cfg)
        assert not is_legal_guess("abcd", cfg)
        assert not is_legal_guess((A, B, C, "moon"), cfg)


class TestSkilledBot:
    def test_zero_error_rate_always_deduces(self) -> None:
        bot = _bot(SkillTier(iq=100, error_rate=0.0, level=3), seed=2)
        result = simulate_game(bot, (B, D, F, A), RoundRules())
        assert result.mistakes == 0
        assert all(d.source is DecisionSource.DEDUCTION for d in result.decisions)

    def test_full_error_rate_always_errs(self) -> None:
        bot = _bot(SkillTier(iq=100, error_rate=1.0, level=3), seed=2)
        result = simulate_game(bot, (B, D, F, A), RoundRules())
        assert result.attempts > 0
        assert result.mistakes == result.attempts

    def test_mistakes_avoid_eliminated_symbols(self) -> None:
        tier = SkillTier(iq=80, error_rate=1.0, level=1)
        bot = _bot(tier, seed=3)
        config = GameConfig(policy=DuplicatePolicy.ALLOW)
        bot.begin_game(config)
        history = (AttemptRecord((A, B, C, D), Feedback(0, 0)),)
        for _ in range(50):
            decision = bot.decide(history)
            assert decision.is_mistake
            assert set(decision.guess) <= {E, F}


class TestSimulateGame:
    def test_terminates_within_attempt_cap(self) -> None:
        rng = random.Random(11)
        for seed in range(30):
            secret = generate_secret(rng=rng)
            result = simulate_game(_bot(skill_tier(80), seed), secret, RoundRules())
            assert 1 <= result.attempts <= 8
            if result.won:
                assert result.history[-1].guess == secret
            else:
                assert result.attempts == 8 or result.timed_out

    def test_history_feedback_matches_engine(self) -> None:
        secret = (C, A, F, E)
        result = simulate_game(_bot(skill_tier(90), 4), secret, RoundRules())
        for rec in result.history:
            assert rec.feedback == evaluate(secret, rec.guess)

    def test_time_budget_exhausted_is_loss_not_error(self) -> None:
        result = simulate_game(_bot(skill_tier(80), 1), (A, B, C, D), RoundRules(duration=3.0))
        assert result.status is RoundStatus.LOST
        assert result.timed_out
        assert result.attempts == 0
        assert result.time_remaining == 0.0

    def test_bot_can_time_out_before_attempt_cap(self) -> None:
        tier = SkillTier(iq=80, error_rate=1.0, level=1)
        result = simulate_game(_bot(tier, 6), (A, B, C, D), RoundRules(duration=20.0))
        assert result.timed_out or result.won
        assert result.attempts < 8

    def test_win_score_includes_bonus(self) -> None:
        tier = SkillTier(iq=110, error_rate=0.0, level=4)
        for seed in range(20):
            result = simulate_game(_bot(tier, seed), (F, E, D, C), RoundRules())
            if result.won:
                per_guess = sum(r.feedback.exact * 60 + r.feedback.present * 25
                                for r in result.history)
                assert result.score - per_guess >= 1000 + 100
                return
        pytest.fail("no tier-110 bot won in 20 games")


class TestErrorRate:
    @pytest.mark.parametrize("iq", [80, 110])
    def test_empirical_error_rate_matches_tier(self, iq: int) -> None:
        tier = skill_tier(iq)
        rng = random.Random(iq)
        turns = mistakes = 0
        for i in range(1000):
            secret = generate_secret(rng=rng)
            result = simulate_game(_bot(tier, rng.getrandbits(32), i), secret, RoundRules())
            turns += result.attempts
            mistakes += result.mistakes
        assert turns > 1000
        assert mistakes / turns == pytest.approx(tier.error_rate, abs=0.03)
