#!/usr/bin/env python3
"""Lightweight JSON API server for the arena.

Exposes the settlement protocol (validate, commit), the payout ladder,
a full simulated arena run, and balances. No web framework; request
bodies are validated by the pydantic models in ``schemas``.

Usage:
    python3 dashboard/server.py                       # in-memory accounts
    python3 dashboard/server.py --data-dir data/      # JSON file accounts
    python3 dashboard/server.py --port 9000           # custom port
"""

from __future__ import annotations

import argparse
import json
import random
import sys
import threading
from decimal import Decimal, InvalidOperation
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from pydantic import ValidationError  # noqa: E402

from currency import from_cents, to_cents  # noqa: E402
from errors import ArenaError, ContractError  # noqa: E402
from ledger import BOT_POOL, RAKE_POOL, AccountStore, InMemoryAccountStore, JsonFileAccountStore  # noqa: E402
from log import configure_logging, get_logger  # noqa: E402
from payouts import describe_ladder  # noqa: E402
from schemas import CommitRequest, ValidateRequest, ValidateResponse  # noqa: E402
from settlement import SettlementService  # noqa: E402
from strategies import strategy_for_level  # noqa: E402
from strategy import SkilledBot, create_bot, skill_tier  # noqa: E402
from tournament import ArenaConfig, Tournament, autoplay, build_tournament_json  # noqa: E402

logger = get_logger("server")

DEFAULT_PLAYER = "player"

Reply = tuple[HTTPStatus, dict]


class ArenaApi:
    """Request handling independent of the HTTP plumbing.

    Each method takes the decoded JSON body (or query) and returns an
    HTTP status and a JSON-ready dict.
    """

    def __init__(self, service: SettlementService) -> None:
        self.service = service
        self._lock = threading.Lock()
        self._snapshots: dict[str, ValidateResponse] = {}

    @property
    def store(self) -> AccountStore:
        return self.service.store

    def validate(self, body: dict) -> Reply:
        player_id = body.pop("player_id", DEFAULT_PLAYER)
        request = ValidateRequest.model_validate(body)
        response = self.service.validate(player_id, request)
        if response.accepted:
            with self._lock:
                self._snapshots[player_id] = response
        return HTTPStatus.OK, response.model_dump(mode="json")

    def commit(self, body: dict) -> Reply:
        player_id = body.pop("player_id", DEFAULT_PLAYER)
        request = CommitRequest.model_validate(body)
        with self._lock:
            snapshot = self._snapshots.pop(player_id, None)
        response = self.service.commit(player_id, request, snapshot)
        status = HTTPStatus.OK if response.accepted else HTTPStatus.CONFLICT
        return status, response.model_dump(mode="json")

    def ladder(self, query: dict[str, list[str]]) -> Reply:
        try:
            entrants = int(query["entrants"][0])
            pool_cents = to_cents(Decimal(query["pool"][0]))
        except (KeyError, ValueError, InvalidOperation) as exc:
            raise ContractError(f"entrants and pool are required: {exc}") from None
        rows = describe_ladder(entrants, pool_cents)
        return HTTPStatus.OK, {
            "entrants": entrants,
            "pool": str(from_cents(pool_cents)),
            "rows": [
                {"position_range": r.position_range,
                 "prize_each": str(from_cents(r.prize_each)),
                 "label": r.label}
                for r in rows
            ],
        }

    def arena(self, body: dict) -> Reply:
        """Simulate a whole arena with the player's seat auto-played."""
        player_id = body.get("player_id", DEFAULT_PLAYER)
        config = ArenaConfig(
            buy_in_cents=to_cents(body.get("buy_in", "0.55")),
            rake_cents=to_cents(body.get("rake", "0.05")),
            bot_count=int(body.get("bots", 9)),
            tiers=tuple(body.get("tiers", [80])),
            seed=body.get("seed"),
        )
        tournament = Tournament(config, player_id=player_id)
        snapshot = None
        if body.get("settle"):
            snapshot = self.service.validate(player_id, config.validate_request())
            if not snapshot.accepted:
                return HTTPStatus.CONFLICT, snapshot.model_dump(mode="json")

        tier = skill_tier(int(body.get("player_tier", 110)))
        seat = SkilledBot(create_bot(0, tier), strategy_for_level(tier.level)(),
                          random.Random(config.seed))
        autoplay(tournament.start_round(), seat)
        standings = tournament.finish()
        data = build_tournament_json(tournament, standings)

        if snapshot is not None:
            response = self.service.commit(
                player_id, tournament.commit_request(standings), snapshot
            )
            data["settlement"] = response.model_dump(mode="json")
        return HTTPStatus.OK, data

    def balances(self, query: dict[str, list[str]]) -> Reply:
        balances = self.store.balances()
        data: dict = {
            "balances": {k: str(from_cents(v)) for k, v in sorted(balances.items())},
            "bot_pool": str(from_cents(balances.get(BOT_POOL, 0))),
            "rake_pool": str(from_cents(balances.get(RAKE_POOL, 0))),
        }
        player = query.get("player", [None])[0]
        if player:
            data["stats"] = self.store.stats(player).model_dump(mode="json")
            data["history"] = [
                r.model_dump(mode="json") for r in self.store.history(player)
            ]
        return HTTPStatus.OK, data


# ── HTTP Handler ────────────────────────────────────────────

class ArenaServer(ThreadingHTTPServer):
    def __init__(self, address, api: ArenaApi) -> None:
        super().__init__(address, ArenaHandler)
        self.api = api


class ArenaHandler(BaseHTTPRequestHandler):
    server: ArenaServer

    def do_GET(self):
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/")
        qs = parse_qs(parsed.query)
        api = self.server.api

        if path == "/api/ladder":
            return self._dispatch(api.ladder, qs)
        if path == "/api/balances":
            return self._dispatch(api.balances, qs)
        self._json_response({"error": "not found"}, HTTPStatus.NOT_FOUND)

    def do_POST(self):
        path = urlparse(self.path).path.rstrip("/")
        api = self.server.api
        routes = {
            "/api/validate": api.validate,
            "/api/commit": api.commit,
            "/api/arena": api.arena,
        }
        if path not in routes:
            return self._json_response({"error": "not found"}, HTTPStatus.NOT_FOUND)

        content_length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(content_length) if content_length else b"{}"
        try:
            body = json.loads(raw)
        except json.JSONDecodeError as exc:
            return self._json_response({"error": f"invalid JSON: {exc}"}, HTTPStatus.BAD_REQUEST)
        if not isinstance(body, dict):
            return self._json_response({"error": "body must be an object"}, HTTPStatus.BAD_REQUEST)
        self._dispatch(routes[path], body)

    def _dispatch(self, handler, arg) -> None:
        try:
            status, data = handler(arg)
        except ValidationError as exc:
            status = HTTPStatus.UNPROCESSABLE_ENTITY
            data = {"error": "invalid request",
                    "details": json.loads(exc.json(include_url=False))}
        except ContractError as exc:
            status, data = HTTPStatus.BAD_REQUEST, {"error": str(exc)}
        except ArenaError as exc:
            logger.warning("request failed: %s", exc)
            status = HTTPStatus.CONFLICT
            data = {"error": str(exc), "reason": getattr(exc, "reason", None)}
        self._json_response(data, status)

    def _json_response(self, data: dict | list, status: int = 200) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def build_store(data_dir: str | None, seed_balances: dict[str, int]) -> AccountStore:
    if data_dir is None:
        return InMemoryAccountStore(seed_balances)
    store = JsonFileAccountStore(data_dir)
    if not store.balances():
        for account, cents in seed_balances.items():
            store.deposit(account, cents)
    return store


def main():
    parser = argparse.ArgumentParser(description="Mastermind Arena API Server")
    parser.add_argument("--port", type=int, default=8080, help="Port (default: 8080)")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host (default: 0.0.0.0)")
    parser.add_argument("--data-dir", type=str, default=None,
                        help="Persist accounts here (default: in memory)")
    parser.add_argument("--player-balance", type=str, default="10.00",
                        help="Starting balance of the default player")
    parser.add_argument("--bot-pool", type=str, default="1000.00",
                        help="Starting bot-funding pool")
    parser.add_argument("--log-level", type=str, default=None,
                        help="QUIET, NORMAL, VERBOSE or DEBUG (default: $ARENA_LOG_LEVEL)")
    args = parser.parse_args()

    configure_logging(args.log_level)
    store = build_store(args.data_dir, {
        DEFAULT_PLAYER: to_cents(args.player_balance),
        BOT_POOL: to_cents(args.bot_pool),
    })
    server = ArenaServer((args.host, args.port), ArenaApi(SettlementService(store)))
    print(f"Arena API running at http://localhost:{args.port}")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
        server.shutdown()


if __name__ == "__main__":
    main()
