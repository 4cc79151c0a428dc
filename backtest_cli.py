#!/usr/bin/env python3
"""
Backtest CLI — run backtests against a running SignalBot server.

Usage:
  python3 backtest_cli.py replay                         # deployment evaluator, BTC 365d
  python3 backtest_cli.py replay -e all -c BTC ETH -d 180
  python3 backtest_cli.py replay -e high_precision -l 5 -r 5
  python3 backtest_cli.py synthetic                      # every strategy of the demo user
  python3 backtest_cli.py synthetic <strategy_id> --seed 7
"""

import argparse
import json
import time
import urllib.request
import urllib.error

BASE_URL = "http://localhost:8001"

ALL_EVALUATORS = [
    "trend_following", "mean_reversion",
    "high_precision", "high_precision_contrarian",
]

ALL_COINS = ["bitcoin", "ethereum", "solana", "ripple", "binancecoin"]

COIN_LABELS = {
    "bitcoin": "BTC", "ethereum": "ETH", "solana": "SOL",
    "ripple": "XRP", "binancecoin": "BNB", "cardano": "ADA",
    "polkadot": "DOT", "dogecoin": "DOGE",
}

# Reverse map: accept short names like BTC, ETH on the CLI
_SHORT_TO_COIN = {v.lower(): k for k, v in COIN_LABELS.items()}


def _normalize_coin(raw: str) -> str:
    """Accept 'BTC', 'btc', 'bitcoin' → 'bitcoin'."""
    return _SHORT_TO_COIN.get(raw.lower(), raw.lower())


def _request(method: str, path: str, payload: dict = None,
             base_url: str = BASE_URL, user_id: str = None) -> dict | list | None:
    headers = {"Content-Type": "application/json"}
    if user_id:
        headers["X-User-Id"] = user_id
    data = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(f"{base_url}{path}", data=data, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=300) as resp:
            return json.loads(resp.read())
    except urllib.error.HTTPError as e:
        detail = e.read().decode(errors="replace")
        print(f"  ❌ HTTP {e.code}: {detail}")
        return None
    except urllib.error.URLError as e:
        print(f"  ❌ Connection error: {e}")
        return None


def run_replay(evaluator: str, coin: str, days: int, leverage: int,
               risk: float, base_url: str = BASE_URL, user_id: str = None) -> dict | None:
    return _request("POST", "/api/backtest/replay", {
        "evaluator": evaluator,
        "coin": coin,
        "days": days,
        "leverage": leverage,
        "risk_per_trade": risk,
    }, base_url, user_id)


def run_synthetic(strategy_id: str, leverage: int = None, seed: int = None,
                  base_url: str = BASE_URL, user_id: str = None) -> dict | None:
    payload = {}
    if leverage:
        payload["leverage"] = leverage
    if seed is not None:
        payload["seed"] = seed
    return _request("POST", f"/api/strategies/{strategy_id}/backtest", payload,
                    base_url, user_id)


def format_pct(val, width=8):
    """Percentage with ANSI colour."""
    s = f"{val:+.1f}%"
    if val > 0:
        return f"\033[92m{s:>{width}}\033[0m"  # green
    elif val < 0:
        return f"\033[91m{s:>{width}}\033[0m"  # red
    return f"{s:>{width}}"


def print_result(r: dict, label: str):
    """Detailed view of a single backtest."""
    print(f"  ┌─ {label}")
    print(f"  │ Return: {format_pct(r.get('profit_percentage', 0))}  "
          f"(${r.get('initial_balance', 0):.2f} → ${r.get('final_balance', 0):.2f})")
    print(f"  │ Trades: {r.get('total_trades', 0)}  "
          f"(W:{r.get('winning_trades', 0)} L:{r.get('losing_trades', 0)})")
    print(f"  │ WR: {r.get('win_rate', 0):.1f}%  |  PF: {r.get('profit_factor', 0):.2f}  |  "
          f"Avg win: {r.get('avg_win_percentage', 0):.2f}%  |  "
          f"Avg loss: {r.get('avg_loss_percentage', 0):.2f}%")
    print(f"  │ Max DD: {r.get('max_drawdown', 0):.1f}%")
    for t in r.get("trades", []):
        print(f"  │   {t['entry_date']} → {t['exit_date']}  {t['type']:<5} "
              f"{t['entry_price']:>12.2f} → {t['exit_price']:>12.2f}  "
              f"{format_pct(t['pnl_percentage'])}  ({t.get('reason', '')})")
    print(f"  └{'─' * 60}")


def print_compare_table(results: list[dict]):
    """Comparison table for several backtests."""
    if not results:
        return

    print()
    print(f"  {'Label':<34} {'Return':>8}  {'Trd':>4}  {'WR':>5}  {'PF':>6}  {'DD':>5}")
    print(f"  {'─' * 72}")
    for entry in results:
        r = entry["result"]
        print(f"  {entry['label'][:34]:<34} {format_pct(r.get('profit_percentage', 0))}  "
              f"{r.get('total_trades', 0):>4}  {r.get('win_rate', 0):>4.0f}%  "
              f"{r.get('profit_factor', 0):>6.2f}  {r.get('max_drawdown', 0):>4.1f}%")
    print(f"  {'─' * 72}")

    best = max(results, key=lambda x: x["result"].get("profit_percentage", -999))
    avg_ret = sum(e["result"].get("profit_percentage", 0) for e in results) / len(results)
    profitable = sum(1 for e in results if e["result"].get("profit_percentage", 0) > 0)
    print(f"\n  📊 Summary:")
    print(f"     Best:       {best['label']} → {format_pct(best['result']['profit_percentage'])}")
    print(f"     Average:    {format_pct(avg_ret)}")
    print(f"     Profitable: {profitable}/{len(results)}")


def _run_replays(args) -> list[dict]:
    evaluators = ALL_EVALUATORS if "all" in args.evaluators else args.evaluators
    coins = ALL_COINS if "all" in [c.lower() for c in args.coins] else [_normalize_coin(c) for c in args.coins]
    total = len(evaluators) * len(coins)
    results = []
    done = 0
    for evaluator in evaluators:
        for coin in coins:
            done += 1
            label = f"{evaluator} | {COIN_LABELS.get(coin, coin)} | {args.days}d"
            print(f"  [{done}/{total}] {label} ...", end="", flush=True)
            t0 = time.time()
            result = run_replay(evaluator, coin, args.days, args.leverage, args.risk,
                                args.url, args.user)
            elapsed = time.time() - t0
            if result:
                print(f" {format_pct(result.get('profit_percentage', 0))}  "
                      f"({result.get('total_trades', 0)} trades, {elapsed:.1f}s)")
                results.append({"label": label, "result": result})
            else:
                print(f" ❌ FAILED ({elapsed:.1f}s)")
    return results


def _run_synthetics(args) -> list[dict]:
    strategy_ids = args.strategy_ids
    names = {}
    if not strategy_ids:
        strategies = _request("GET", "/api/strategies", base_url=args.url, user_id=args.user) or []
        strategy_ids = [s["id"] for s in strategies]
        names = {s["id"]: s["name"] for s in strategies}

    results = []
    for i, sid in enumerate(strategy_ids, 1):
        label = names.get(sid, sid)
        print(f"  [{i}/{len(strategy_ids)}] {label} ...", end="", flush=True)
        result = run_synthetic(sid, args.leverage, args.seed, args.url, args.user)
        if result:
            label = result.get("strategy", {}).get("name", label)
            print(f" {format_pct(result.get('profit_percentage', 0))}")
            results.append({"label": label, "result": result})
        else:
            print(" ❌ FAILED")
    return results


def main():
    parser = argparse.ArgumentParser(
        description="🚀 Backtest CLI — synthetic and historical-replay backtests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default=BASE_URL,
                        help=f"Server URL (default: {BASE_URL})")
    parser.add_argument("--user", default=None,
                        help="X-User-Id header (default: server's demo user)")
    sub = parser.add_subparsers(dest="mode", required=True)

    replay = sub.add_parser("replay", help="Replay real daily history through evaluators")
    replay.add_argument("-e", "--evaluators", nargs="+", default=["trend_following"],
                        help="Evaluators to test (or 'all')")
    replay.add_argument("-c", "--coins", nargs="+", default=["bitcoin"],
                        help="Coins: bitcoin, ethereum, solana, ... or BTC, ETH (or 'all')")
    replay.add_argument("-d", "--days", type=int, default=365,
                        help="History length in days (default: 365)")
    replay.add_argument("-l", "--leverage", type=int, default=3,
                        help="Leverage (default: 3)")
    replay.add_argument("-r", "--risk", type=float, default=10.0,
                        help="Risk per trade in percent (default: 10)")

    synthetic = sub.add_parser("synthetic", help="Win-rate simulation; writes metrics back")
    synthetic.add_argument("strategy_ids", nargs="*",
                           help="Strategy ids (default: all strategies of the user)")
    synthetic.add_argument("-l", "--leverage", type=int, default=None,
                           help="Leverage (default: strategy max leverage)")
    synthetic.add_argument("--seed", type=int, default=None,
                           help="Random seed for a reproducible run")

    args = parser.parse_args()

    print(f"\n{'═' * 65}")
    print(f"  🚀 BACKTEST CLI — {args.mode}")
    print(f"  Server: {args.url}")
    print(f"{'═' * 65}\n")

    results = _run_replays(args) if args.mode == "replay" else _run_synthetics(args)

    print()
    if len(results) == 1:
        print_result(results[0]["result"], results[0]["label"])
    elif results:
        print_compare_table(results)
    print()


if __name__ == "__main__":
    main()
