#!/usr/bin/env python3
"""Run bots of one skill tier with detailed per-game output."""

from __future__ import annotations

import argparse
import json
import math
import random
import sys
from pathlib import Path

from log import configure_logging
from mastermind_env import (
    SYMBOL_IDS,
    DuplicatePolicy,
    RoundRules,
    all_codes,
    filter_candidates,
    generate_secret,
)
from strategies import strategy_for_level
from strategy import SKILL_TIERS, SkilledBot, create_bot, simulate_game, skill_tier

RESULTS_DIR = Path(__file__).resolve().parent / "results"


def _entropy_bits(n: int) -> float:
    return math.log2(n) if n > 1 else 0.0


def run_experiment(
    iq: int,
    num_games: int = 100,
    seed: int = 42,
    rules: RoundRules | None = None,
    verbose: bool = False,
) -> list[dict]:
    """Play *num_games* games with a fresh tier-*iq* bot each time."""
    rules = rules or RoundRules()
    tier = skill_tier(iq)
    rng = random.Random(seed)
    universe = all_codes(rules.policy, SYMBOL_IDS)
    logs: list[dict] = []

    for i in range(1, num_games + 1):
        game_rng = random.Random(rng.getrandbits(64))
        secret = generate_secret(rules.policy, SYMBOL_IDS, rng=game_rng)
        bot = SkilledBot(create_bot(i - 1, tier), strategy_for_level(tier.level)(), game_rng)
        result = simulate_game(bot, secret, rules)

        if verbose:
            print(f"\n--- Game {i}/{num_games} | Secret: {' '.join(secret)} ---")

        candidates = universe
        steps: list[dict] = []
        for rec, decision in zip(result.history, result.decisions):
            candidates = filter_candidates(candidates, rec.guess, rec.feedback)
            steps.append({
                "guess": list(rec.guess),
                "exact": rec.feedback.exact,
                "present": rec.feedback.present,
                "source": decision.source.value,
                "confirmed": sorted(decision.confirmed),
                "remaining": len(candidates),
                "entropy_bits": round(_entropy_bits(len(candidates)), 3),
            })
            if verbose:
                tag = "!" if decision.is_mistake else " "
                print(f"  {tag}Guess {len(steps)}: {' '.join(rec.guess):<36} "
                      f"{rec.feedback.exact}/{rec.feedback.present}  "
                      f"remaining={len(candidates)}")

        logs.append({
            "game": i,
            "secret": list(secret),
            "won": result.won,
            "timed_out": result.timed_out,
            "attempts": result.attempts,
            "score": result.score,
            "time_remaining": round(result.time_remaining, 2),
            "mistakes": result.mistakes,
            "steps": steps,
        })
        if verbose:
            status = "WON" if result.won else ("TIMED OUT" if result.timed_out else "LOST")
            print(f"  -> {status} in {result.attempts} attempts, score {result.score}")

    return logs


def summarize(logs: list[dict]) -> dict:
    n = len(logs)
    turns = sum(len(g["steps"]) for g in logs)
    mistakes = sum(g["mistakes"] for g in logs)
    won = [g for g in logs if g["won"]]
    return {
        "games": n,
        "turns": turns,
        "error_rate": round(mistakes / turns, 4) if turns else 0.0,
        "win_rate": round(len(won) / n, 4) if n else 0.0,
        "timeouts": sum(1 for g in logs if g["timed_out"]),
        "mean_attempts_to_win": (
            round(sum(g["attempts"] for g in won) / len(won), 3) if won else None
        ),
        "mean_score": round(sum(g["score"] for g in logs) / n, 1) if n else 0.0,
    }


def print_experiment_summary(summary: dict, iq: int) -> None:
    tier = skill_tier(iq)
    print(f"\n=== Tier {iq} (level {tier.level}) - {summary['games']} games ===")
    print(f"  Won: {summary['win_rate'] * 100:.1f}%   timeouts: {summary['timeouts']}")
    print(f"  Error rate: {summary['error_rate'] * 100:.2f}% "
          f"(configured {tier.error_rate * 100:.0f}%) over {summary['turns']} turns")
    if summary["mean_attempts_to_win"] is not None:
        print(f"  Mean attempts to win: {summary['mean_attempts_to_win']:.2f}")
    print(f"  Mean score: {summary['mean_score']:.1f}")


def plot_distribution(logs: list[dict], iq: int, path: Path | None = None) -> None:
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        print("matplotlib not installed - skipping plot", file=sys.stderr)
        return

    attempts = [g["attempts"] for g in logs if g["won"]]
    if not attempts:
        return
    bins = list(range(1, max(attempts) + 2))

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.hist(attempts, bins=bins, edgecolor="black", align="left")
    ax.set_title(f"Tier {iq} - attempts to win")
    ax.set_xlabel("Attempts")
    ax.set_ylabel("Games")
    fig.tight_layout()

    dest = path or RESULTS_DIR / f"experiment_tier{iq}.png"
    dest.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(dest, dpi=150)
    plt.close(fig)
    print(f"Plot saved to {dest}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Single-tier bot experiment")
    parser.add_argument("--tier", type=int, required=True, choices=sorted(SKILL_TIERS),
                        help="Bot skill tier")
    parser.add_argument("--num-games", type=int, default=100, help="Number of games")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--max-attempts", type=int, default=RoundRules().max_attempts)
    parser.add_argument("--duration", type=float, default=RoundRules().duration,
                        help="Round time budget in seconds")
    parser.add_argument("--allow-duplicates", action="store_true",
                        help="Secrets and guesses may repeat symbols")
    parser.add_argument("--verbose", action="store_true", help="Print per-game details")
    parser.add_argument("--plot", type=str, default=None, help="Save plot to this path")
    parser.add_argument("--json", type=str, default=None, help="Save results as JSON")
    parser.add_argument("--log-level", type=str, default=None,
                        help="QUIET, NORMAL, VERBOSE or DEBUG (default: $ARENA_LOG_LEVEL)")
    args = parser.parse_args()

    configure_logging(args.log_level)
    policy = DuplicatePolicy.ALLOW if args.allow_duplicates else DuplicatePolicy.UNIQUE
    rules = RoundRules(args.max_attempts, args.duration, policy)

    logs = run_experiment(
        iq=args.tier,
        num_games=args.num_games,
        seed=args.seed,
        rules=rules,
        verbose=args.verbose,
    )
    summary = summarize(logs)
    print_experiment_summary(summary, args.tier)

    plot_path = Path(args.plot) if args.plot else RESULTS_DIR / f"experiment_tier{args.tier}.png"
    plot_distribution(logs, args.tier, plot_path)

    json_path = Path(args.json) if args.json else RESULTS_DIR / f"experiment_tier{args.tier}.json"
    json_path.parent.mkdir(parents=True, exist_ok=True)
    output = {
        "tier": args.tier,
        "config": {
            "max_attempts": rules.max_attempts,
            "duration": rules.duration,
            "policy": rules.policy.value,
            "num_games": args.num_games,
            "seed": args.seed,
        },
        "summary": summary,
        "games": logs,
    }
    json_path.write_text(json.dumps(output, indent=2, ensure_ascii=False), encoding="utf-8")
    print(f"JSON saved to {json_path}")


if __name__ == "__main__":
    main()
