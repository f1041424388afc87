"""
Rendering - Rich panels for simulation and optimization results.
"""

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table as RichTable
from rich.text import Text

from .aggregator import DRAWDOWN_LEVELS, RETURN_LEVELS, level_key
from .config import DEFAULT_CONFIG

SPARK_CHARS = "▁▂▃▄▅▆▇█"


def _table(title):
    return RichTable(
        title=title,
        expand=True,
        title_style="bold white",
        show_header=True,
        header_style="bold cyan",
    )


def _signed(value, fmt="{:+.2%}"):
    style = "green" if value > 0 else "red" if value < 0 else ""
    return Text(fmt.format(value), style=style)


def sparkline(counts):
    """One block character per histogram bin, scaled to the tallest bin."""
    counts = np.asarray(counts)
    peak = counts.max() if len(counts) and counts.max() > 0 else 1
    scaled = (counts / peak * len(SPARK_CHARS)).astype(int)
    return "".join(" " if s <= 0 else SPARK_CHARS[min(s, len(SPARK_CHARS)) - 1] for s in scaled)


def render_distribution_params(tickers, params, console):
    tbl = _table("Derived Distributions")
    tbl.add_column("Ticker", style="bold", width=10)
    tbl.add_column("mu", justify="right", width=10)
    tbl.add_column("sigma", justify="right", width=10)
    tbl.add_column("skew", justify="right", width=8)
    tbl.add_column("tail df", justify="right", width=8)
    for ticker, p in zip(tickers, params):
        df_style = "red" if p.tail_df < 8 else "yellow" if p.tail_df < 20 else ""
        tbl.add_row(ticker, f"{p.mu:.2%}", f"{p.sigma:.2%}", f"{p.skew:+.2f}",
                    Text(str(p.tail_df), style=df_style))
    console.print(Panel(tbl, border_style="cyan"))


def render_simulation_result(result, console=None):
    """Percentile table, loss probabilities, tail risk and a histogram."""
    console = console or Console(width=110)
    if result.is_empty:
        console.print(Panel("[bold red]No valid scenarios[/bold red]",
                            title="Simulation", border_style="red"))
        return

    tbl = _table(f"Terminal Outcomes ({result.n_valid:,} paths, {result.method})")
    tbl.add_column("Percentile", style="bold", width=12)
    tbl.add_column("Return", justify="right", width=12)
    tbl.add_column("Value", justify="right", width=16)
    for p in RETURN_LEVELS:
        key = level_key(p)
        tbl.add_row(key.upper(), _signed(result.terminal[key]),
                    f"${result.terminal_dollars[key]:,.0f}")
    tbl.add_row(Text("Mean", style="bold"), _signed(result.terminal["mean"]),
                f"${result.terminal_dollars['mean']:,.0f}")
    console.print(Panel(tbl, border_style="cyan"))

    risk = _table("Risk")
    risk.add_column("Metric", style="bold", width=26)
    risk.add_column("Value", justify="right", width=14)
    pl = result.prob_loss
    risk.add_row("P(loss)", f"{pl['breakeven']:.1%}")
    risk.add_row("P(loss > 10%)", f"{pl['loss_10']:.1%}")
    risk.add_row("P(loss > 20%)", f"{pl['loss_20']:.1%}")
    risk.add_row(f"P(loss > {pl['threshold']:.0%})", f"{pl['beyond_threshold']:.1%}")
    for alpha in sorted(result.var):
        risk.add_row(f"VaR {1 - alpha:.0%}", f"{result.var[alpha]:.2%}")
        risk.add_row(f"CVaR {1 - alpha:.0%}", f"{result.cvar[alpha]:.2%}")
    for p in DRAWDOWN_LEVELS:
        key = level_key(p)
        risk.add_row(f"Drawdown {key.upper()}", f"{result.drawdown[key]:.1%}")
    risk.add_row("Annual vol (analytic)", f"{result.annual_vol:.2%}")
    if result.n_anomalies:
        risk.add_row(Text("Anomalous paths", style="yellow"), f"{result.n_anomalies:,}")
    console.print(Panel(risk, border_style="cyan"))

    if result.histogram is not None:
        counts, edges = result.histogram
        lines = [
            f"[{sparkline(counts)}]",
            f"{edges[0]:+.1%}{'':>20s}{result.terminal['p50']:+.1%}{'':>20s}{edges[-1]:+.1%}",
            f"Simulated in {result.elapsed_seconds:.2f}s",
        ]
        console.print(Panel("\n".join(lines), title="Return Distribution", border_style="cyan"))

    for msg in result.warnings:
        console.print(f"[yellow]Warning: {msg}[/yellow]")


def render_attribution(attribution, console):
    if not attribution:
        return
    labels = list(attribution)
    tickers = list(next(iter(attribution.values())).contributions)
    tbl = _table("Contribution by Percentile")
    tbl.add_column("Ticker", style="bold", width=10)
    for label in labels:
        tbl.add_column(label.upper(), justify="right", width=9)
    for t in tickers:
        tbl.add_row(t, *[_signed(attribution[lab].contributions[t]) for lab in labels])
    tbl.add_row("Cash", *[f"{attribution[lab].cash_contribution:+.2%}" for lab in labels])
    tbl.add_row(Text("Total", style="bold"),
                *[_signed(attribution[lab].total()) for lab in labels])
    console.print(Panel(tbl, border_style="cyan"))


def render_optimization_result(result, console=None):
    console = console or Console(width=110)

    head = (f"Return {result.portfolio_return:.2%}  Vol {result.portfolio_vol:.2%}  "
            f"Sharpe {result.sharpe:.3f}  Leverage {result.leverage_ratio:.2f}x  "
            f"Cash {result.cash_weight:.1%}")
    console.print(Panel(head, title="Current Portfolio", border_style="cyan"))

    tbl = _table("Risk Decomposition")
    tbl.add_column("Ticker", style="bold", width=8)
    tbl.add_column("Weight", justify="right", width=9)
    tbl.add_column("mu", justify="right", width=8)
    tbl.add_column("sigma", justify="right", width=8)
    tbl.add_column("MCTR", justify="right", width=8)
    tbl.add_column("Risk %", justify="right", width=8)
    tbl.add_column("iSharpe", justify="right", width=9)
    tbl.add_column("Opt. ratio", justify="right", width=10)
    for row in result.positions:
        tbl.add_row(
            row.ticker, f"{row.adjusted_weight:.1%}", f"{row.mu:.1%}", f"{row.sigma:.1%}",
            f"{row.mctr:.3f}", f"{row.risk_contribution:.1%}",
            _signed(row.incremental_sharpe, "{:+.3f}"), f"{row.optimality_ratio:.2f}",
        )
    console.print(Panel(tbl, border_style="cyan"))

    swaps = _table(f"Top Swaps (validated, {result.validation_paths:,} paths each)")
    swaps.add_column("Sell -> Buy", style="bold", width=16)
    swaps.add_column("dSharpe", justify="right", width=9)
    swaps.add_column("dVol", justify="right", width=9)
    swaps.add_column("dReturn", justify="right", width=9)
    swaps.add_column("MC dSharpe", justify="right", width=10)
    swaps.add_column("MC dP(loss)", justify="right", width=11)
    for v in result.top_swaps:
        s = v.swap
        swaps.add_row(
            f"{s.sell} -> {s.buy}",
            _signed(s.delta_sharpe, "{:+.4f}"),
            f"{s.delta_vol:+.3%}",
            f"{s.delta_return:+.3%}",
            _signed(v.delta_mc_sharpe, "{:+.4f}"),
            f"{v.delta_p_loss:+.2%}",
        )
    console.print(Panel(swaps, border_style="cyan"))

    rp = result.risk_parity
    rp_tbl = _table("Risk Parity Target")
    rp_tbl.add_column("Ticker", style="bold", width=10)
    rp_tbl.add_column("Current", justify="right", width=10)
    rp_tbl.add_column("Target", justify="right", width=10)
    for row, w in zip(result.positions, rp.weights):
        rp_tbl.add_row(row.ticker, f"{row.weight:.1%}", f"{w:.1%}")
    rp_tbl.add_row("", "", "")
    rp_tbl.add_row(Text("Sharpe", style="bold"), f"{result.sharpe:.3f}", f"{rp.sharpe:.3f}")
    console.print(Panel(rp_tbl, border_style="cyan"))


def render_correlation(tickers, raw, repaired, console):
    tbl = _table("Correlation (raw -> repaired)")
    tbl.add_column("", style="bold", width=8)
    for t in tickers:
        tbl.add_column(t, justify="right", width=13)
    for i, t in enumerate(tickers):
        cells = []
        for j in range(len(tickers)):
            r, v = raw[i][j], repaired[i][j]
            changed = abs(r - v) > 1e-9
            cells.append(Text(f"{r:+.2f}->{v:+.2f}" if changed else f"{v:+.2f}",
                              style="yellow" if changed else ""))
        tbl.add_row(t, *cells)
    console.print(Panel(tbl, border_style="cyan"))


def render_config(console):
    tbl = _table("Engine Defaults")
    tbl.add_column("Key", style="bold", width=26)
    tbl.add_column("Value", justify="right", width=14)
    for key, value in DEFAULT_CONFIG.items():
        tbl.add_row(key, f"{value:,}" if isinstance(value, int) else str(value))
    console.print(Panel(tbl, border_style="cyan"))
