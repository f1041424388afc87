#!/usr/bin/env python3
"""
Risk Desk - Monte Carlo risk report for a percentile-view portfolio.

Reads a JSON portfolio (positions with p5/p25/p50/p75/p95 return views,
cash, cash rate and an optional correlation matrix), simulates one-year
outcomes and suggests risk-improving swaps.

Usage:
    python risk_desk.py simulate book.json [--paths N] [--sampling quasi|pseudo]
    python risk_desk.py optimize book.json [--rf R] [--swap-size S] [--top N]
    python risk_desk.py derive P5 P25 P50 P75 P95   # percentiles -> shape
    python risk_desk.py repair book.json            # raw vs repaired correlation
    python risk_desk.py config                      # engine defaults
"""

import argparse
import json
import logging

import numpy as np
from rich.console import Console
from rich.markup import escape

from riskengine import (
    ContractViolation,
    DEFAULT_CONFIG,
    OptimizationConfig,
    SimulationConfig,
    derive_distribution,
    load_portfolio,
    percentiles_from_params,
    repair_correlation,
    validate_percentiles,
)
from riskengine.engine import RiskEngine
from riskengine.rendering import (
    render_attribution,
    render_config,
    render_correlation,
    render_distribution_params,
    render_optimization_result,
    render_simulation_result,
)

log = logging.getLogger("risk_desk")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


# ── Commands ────────────────────────────────────────────────────────────

def _sim_config(args):
    return SimulationConfig(
        n_paths=args.paths,
        sampling=args.sampling,
        fat_tail=args.fat_tail,
        sequence=args.sequence,
        n_workers=args.workers,
        random_seed=args.seed,
        drawdown_threshold=args.threshold,
    )


def cmd_simulate(args, console):
    portfolio, corr = load_portfolio(args.portfolio)
    for pos in portfolio.positions:
        for issue in pos.problems():
            console.print(f"[yellow]{pos.ticker}: {issue}[/yellow]")
    sim = _sim_config(args)
    sim.attribution = not args.no_attribution
    engine = RiskEngine(portfolio, corr, sim_config=sim)
    render_distribution_params(portfolio.tickers, engine.params, console)
    result = engine.simulate()
    render_simulation_result(result, console)
    render_attribution(result.attribution, console)


def cmd_optimize(args, console):
    portfolio, corr = load_portfolio(args.portfolio)
    sim = _sim_config(args)
    opt = OptimizationConfig(
        risk_free_rate=args.rf,
        swap_amount=args.swap_size,
        top_n=args.top,
        validation_paths=args.paths,
        simulation=sim,
    )
    engine = RiskEngine(portfolio, corr, sim_config=sim, opt_config=opt)
    render_optimization_result(engine.optimize(), console)


def cmd_derive(args, console):
    values = (args.p5, args.p25, args.p50, args.p75, args.p95)
    for issue in validate_percentiles(values):
        console.print(f"[yellow]{issue}[/yellow]")
    params = derive_distribution(*values)
    render_distribution_params(["view"], [params], console)
    implied = percentiles_from_params(params)
    console.print("Implied: " + "  ".join(f"{k} {v:+.2%}" for k, v in implied.items()))


def cmd_repair(args, console):
    portfolio, corr = load_portfolio(args.portfolio)
    if corr is None:
        console.print("[dim]No correlation in portfolio file, using identity[/dim]")
        corr = np.eye(portfolio.n)
    if corr.shape != (portfolio.n, portfolio.n):
        raise ContractViolation(
            f"Correlation shape {corr.shape} does not match {portfolio.n} positions")
    render_correlation(portfolio.tickers, corr, repair_correlation(corr), console)


def cmd_config(args, console):
    render_config(console)


# ── CLI ─────────────────────────────────────────────────────────────────

def _add_sim_args(p, default_paths):
    p.add_argument("portfolio", help="Portfolio JSON file")
    p.add_argument("--paths", type=int, default=default_paths,
                   help=f"Number of simulation paths (default: {default_paths})")
    p.add_argument("--sampling", default="quasi", choices=["quasi", "pseudo"],
                   help="Sampling method (default: quasi)")
    p.add_argument("--fat-tail", default="mvt", choices=["mvt", "copula"],
                   help="Fat-tail method (default: mvt)")
    p.add_argument("--sequence", default="sobol", choices=["sobol", "halton"],
                   help="Low-discrepancy sequence for quasi sampling (default: sobol)")
    p.add_argument("--workers", type=int, default=None, help="Worker threads")
    p.add_argument("--seed", type=int, default=None, help="Seed for pseudo sampling")
    p.add_argument("--threshold", type=float, default=DEFAULT_CONFIG["drawdown_threshold"],
                   help="Loss threshold for P(loss > T) (default: 0.10)")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Portfolio Risk Desk",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log INFO (-v) or DEBUG (-vv)")

    sub = parser.add_subparsers(dest="command")

    # simulate
    sim_p = sub.add_parser("simulate", help="Run the Monte Carlo simulation")
    _add_sim_args(sim_p, DEFAULT_CONFIG["n_paths"])
    sim_p.add_argument("--no-attribution", action="store_true",
                       help="Skip per-position attribution")

    # optimize
    opt_p = sub.add_parser("optimize", help="Risk decomposition and swap search")
    _add_sim_args(opt_p, DEFAULT_CONFIG["validation_paths"])
    opt_p.add_argument("--rf", type=float, default=DEFAULT_CONFIG["risk_free_rate"],
                       help="Risk-free rate (default: 0.05)")
    opt_p.add_argument("--swap-size", type=float, default=DEFAULT_CONFIG["swap_amount"],
                       help="Swap size as a weight fraction (default: 0.01)")
    opt_p.add_argument("--top", type=int, default=DEFAULT_CONFIG["top_n"],
                       help="Swaps to validate (default: 15)")

    # derive
    der_p = sub.add_parser("derive", help="Derive distribution shape from percentiles")
    for key in ("p5", "p25", "p50", "p75", "p95"):
        der_p.add_argument(key, type=float)

    # repair
    rep_p = sub.add_parser("repair", help="Show raw vs repaired correlation")
    rep_p.add_argument("portfolio", help="Portfolio JSON file")

    # config
    sub.add_parser("config", help="Show engine defaults")

    return parser


COMMANDS = {
    "simulate": cmd_simulate,
    "optimize": cmd_optimize,
    "derive": cmd_derive,
    "repair": cmd_repair,
    "config": cmd_config,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)
    console = Console(width=110)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        COMMANDS[args.command](args, console)
    except (ContractViolation, OSError, json.JSONDecodeError) as e:
        log.debug("Command failed", exc_info=True)
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
