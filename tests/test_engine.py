"""Tests for the engine facade, rendering and the risk_desk CLI."""

import io
import json

import numpy as np
import pytest
from rich.console import Console

import risk_desk
from riskengine import (
    ContractViolation,
    OptimizationConfig,
    Portfolio,
    Position,
    SimulationConfig,
    run_optimization,
    run_simulation,
)
from riskengine.aggregator import SimulationResult
from riskengine.correlation import is_positive_definite
from riskengine.engine import RiskEngine, prepare_correlation
from riskengine.rendering import (
    render_attribution,
    render_config,
    render_optimization_result,
    render_simulation_result,
    sparkline,
)


# ── Helpers ──────────────────────────────────────────────────────────────

def _make_portfolio(cash=2_000.0, cash_rate=0.04):
    return Portfolio(
        positions=[
            Position("SPY", 20, 500.0, -0.25, -0.02, 0.08, 0.17, 0.35),
            Position("TLT", 50, 90.0, -0.12, -0.03, 0.03, 0.08, 0.16),
            Position("GLD", 30, 200.0, -0.20, -0.05, 0.05, 0.14, 0.30),
        ],
        cash=cash,
        cash_rate=cash_rate,
    )


CORR = [[1.0, -0.2, 0.1], [-0.2, 1.0, 0.3], [0.1, 0.3, 1.0]]


def _console():
    return Console(file=io.StringIO(), width=110)


def _write_book(tmp_path, correlation=CORR):
    pf = _make_portfolio()
    data = {
        "cash": pf.cash,
        "cash_rate": pf.cash_rate,
        "positions": [
            {"ticker": p.ticker, "quantity": p.quantity, "price": p.price,
             "percentiles": dict(zip(("p5", "p25", "p50", "p75", "p95"), p.percentiles()))}
            for p in pf.positions
        ],
    }
    if correlation is not None:
        data["correlation"] = correlation
    path = tmp_path / "book.json"
    path.write_text(json.dumps(data))
    return str(path)


# ── Correlation boundary ─────────────────────────────────────────────────

class TestPrepareCorrelation:
    def test_none_is_identity(self):
        assert np.array_equal(prepare_correlation(None, 3), np.eye(3))

    def test_shape_mismatch(self):
        with pytest.raises(ContractViolation):
            prepare_correlation(np.eye(2), 3)

    def test_indefinite_repaired(self):
        raw = [[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]]
        assert is_positive_definite(prepare_correlation(raw, 3))

    def test_ragged_is_contract_violation(self):
        with pytest.raises(ContractViolation, match="numeric"):
            prepare_correlation([[1.0, 0.2], [0.2]], 2)


# ── Engine ───────────────────────────────────────────────────────────────

class TestRiskEngine:
    def test_setup(self):
        engine = RiskEngine(_make_portfolio(), CORR)
        assert len(engine.params) == 3
        assert engine.cov.shape == (3, 3)
        assert engine.annual_vol > 0
        assert engine.method_label == "quasi-sobol/mvt"

    def test_empty_portfolio(self):
        with pytest.raises(ContractViolation):
            RiskEngine(Portfolio(), None)

    def test_bad_config(self):
        with pytest.raises(ContractViolation):
            RiskEngine(_make_portfolio(), CORR, sim_config=SimulationConfig(n_paths=0))

    def test_simulate(self):
        result = run_simulation(_make_portfolio(), CORR, SimulationConfig(n_paths=20_000))
        assert result.n_paths == 20_000
        assert result.n_valid == 20_000
        assert not result.is_empty
        t = result.terminal
        ordered = [t[k] for k in ("p5", "p10", "p25", "p50", "p75", "p90", "p95")]
        assert ordered == sorted(ordered)
        assert result.prob_loss["breakeven"] < 0.5
        assert result.var[0.01] >= result.var[0.05]
        assert set(result.distribution_params) == {"SPY", "TLT", "GLD"}
        assert result.elapsed_seconds > 0

    def test_analytic_attribution_sums(self):
        result = run_simulation(_make_portfolio(), CORR, SimulationConfig(n_paths=5_000))
        assert set(result.attribution) == {"p5", "p10", "p25", "p50", "p75", "p90", "p95"}
        for label, attr in result.attribution.items():
            assert abs(attr.total() - result.terminal[label]) < 1e-6

    def test_empirical_attribution_sums(self):
        cfg = SimulationConfig(n_paths=5_000, keep_asset_returns=True)
        result = run_simulation(_make_portfolio(), CORR, cfg)
        for label, attr in result.attribution.items():
            assert abs(attr.total() - result.terminal[label]) < 1e-6

    def test_attribution_disabled(self):
        cfg = SimulationConfig(n_paths=1_000, attribution=False)
        assert run_simulation(_make_portfolio(), CORR, cfg).attribution == {}

    def test_quasi_deterministic(self):
        cfg = SimulationConfig(n_paths=3_000, n_workers=3)
        a = run_simulation(_make_portfolio(), CORR, cfg)
        b = run_simulation(_make_portfolio(), CORR, cfg)
        assert a.terminal == b.terminal
        assert a.var == b.var

    def test_pseudo_and_copula(self):
        cfg = SimulationConfig(n_paths=5_000, sampling="pseudo", fat_tail="copula",
                               random_seed=1)
        result = run_simulation(_make_portfolio(), CORR, cfg)
        assert result.method == "pseudo/copula"
        assert not result.is_empty

    def test_halton(self):
        cfg = SimulationConfig(n_paths=2_000, sequence="halton")
        assert run_simulation(_make_portfolio(), CORR, cfg).method == "quasi-halton/mvt"

    def test_single_position_end_to_end(self):
        pf = Portfolio(positions=[Position("X", 100, 10.0, -0.20, 0.02, 0.10, 0.18, 0.35)])
        engine = RiskEngine(pf, None, sim_config=SimulationConfig(n_paths=100_000))
        p = engine.params[0]
        assert p.mu == pytest.approx(0.10)
        assert p.sigma == pytest.approx(0.119, abs=1e-3)
        # Median of the skew transform sits at z' = -delta * sqrt(2/pi)
        delta = p.skew / np.sqrt(1.0 + p.skew ** 2)
        expected_median = p.mu - delta * np.sqrt(2.0 / np.pi) * p.sigma
        assert expected_median == pytest.approx(0.113, abs=1e-3)
        result = engine.simulate()
        assert abs(result.terminal["p50"] - expected_median) < 0.01
        assert result.terminal["p5"] < 0.0 < result.terminal["p95"]
        assert result.portfolio_value == 1000.0

    def test_two_uncorrelated_assets_vol(self):
        view = (-0.229, -0.035, 0.10, 0.235, 0.429)
        pf = Portfolio(positions=[Position("A", 1, 100.0, *view), Position("B", 1, 100.0, *view)])
        engine = RiskEngine(pf, np.eye(2))
        assert abs(engine.annual_vol - 0.20 * np.sqrt(0.5)) < 1e-3


class TestOptimization:
    def test_run_optimization(self):
        cfg = OptimizationConfig(validation_paths=500, top_n=4,
                                 simulation=SimulationConfig(n_workers=2))
        result = run_optimization(_make_portfolio(), CORR, cfg)
        assert [r.ticker for r in result.positions] == ["SPY", "TLT", "GLD"]
        assert abs(sum(r.risk_contribution for r in result.positions) - 1.0) < 1e-6
        assert len(result.top_swaps) == 4
        deltas = [v.delta_mc_sharpe for v in result.top_swaps]
        assert deltas == sorted(deltas, reverse=True)
        assert result.baseline.n_paths == 500
        assert abs(result.risk_parity.weights.sum() - 1.0) < 1e-10
        assert result.risk_parity.delta_sharpe == pytest.approx(
            result.risk_parity.sharpe - result.sharpe)
        assert result.timestamp

    def test_leverage_scales_swap(self):
        pf = _make_portfolio(cash=-3_000.0)
        cfg = OptimizationConfig(validation_paths=200, top_n=1)
        result = RiskEngine(pf, CORR, opt_config=cfg).optimize()
        assert result.leverage_ratio > 1.0
        assert result.swap_matrix.trade_size == pytest.approx(0.01 * result.leverage_ratio)


# ── Rendering ────────────────────────────────────────────────────────────

class TestRendering:
    def test_sparkline(self):
        line = sparkline([0, 1, 2, 4])
        assert len(line) == 4
        assert line[0] == " "
        assert line[-1] == "█"

    def test_render_simulation(self):
        console = _console()
        result = run_simulation(_make_portfolio(), CORR, SimulationConfig(n_paths=2_000))
        render_simulation_result(result, console)
        render_attribution(result.attribution, console)
        out = console.file.getvalue()
        assert "Terminal Outcomes" in out
        assert "VaR 95%" in out
        assert "SPY" in out

    def test_render_empty(self):
        console = _console()
        render_simulation_result(SimulationResult.empty(100.0), console)
        assert "No valid scenarios" in console.file.getvalue()

    def test_render_optimization(self):
        console = _console()
        cfg = OptimizationConfig(validation_paths=200, top_n=2)
        render_optimization_result(run_optimization(_make_portfolio(), CORR, cfg), console)
        out = console.file.getvalue()
        assert "Risk Decomposition" in out
        assert "Risk Parity Target" in out

    def test_render_config(self):
        console = _console()
        render_config(console)
        assert "qmc_skip" in console.file.getvalue()


# ── CLI ──────────────────────────────────────────────────────────────────

class TestCLI:
    def test_parser(self):
        args = risk_desk.build_parser().parse_args(
            ["-vv", "simulate", "book.json", "--paths", "500", "--sampling", "pseudo"])
        assert args.verbose == 2
        assert args.command == "simulate"
        assert args.paths == 500
        assert args.sampling == "pseudo"
        assert args.fat_tail == "mvt"

    def test_no_command(self, capsys):
        assert risk_desk.main([]) == 0

    def test_config(self, capsys):
        assert risk_desk.main(["config"]) == 0
        assert "Engine Defaults" in capsys.readouterr().out

    def test_derive(self, capsys):
        assert risk_desk.main(["derive", "-0.2", "0", "0.08", "0.16", "0.35"]) == 0
        out = capsys.readouterr().out
        assert "Derived Distributions" in out
        assert "Implied" in out

    def test_simulate(self, tmp_path, capsys):
        path = _write_book(tmp_path)
        assert risk_desk.main(["simulate", path, "--paths", "2000", "--workers", "2"]) == 0
        out = capsys.readouterr().out
        assert "Terminal Outcomes" in out
        assert "Contribution by Percentile" in out

    def test_simulate_no_attribution(self, tmp_path, capsys):
        path = _write_book(tmp_path)
        assert risk_desk.main(["simulate", path, "--paths", "500", "--no-attribution"]) == 0
        assert "Contribution by Percentile" not in capsys.readouterr().out

    def test_optimize(self, tmp_path, capsys):
        path = _write_book(tmp_path)
        assert risk_desk.main(["optimize", path, "--paths", "300", "--top", "3"]) == 0
        assert "Top Swaps" in capsys.readouterr().out

    def test_repair(self, tmp_path, capsys):
        path = _write_book(tmp_path, correlation=[[1.0, 0.95, -0.95],
                                                  [0.95, 1.0, 0.95],
                                                  [-0.95, 0.95, 1.0]])
        assert risk_desk.main(["repair", path]) == 0
        assert "raw -> repaired" in capsys.readouterr().out

    def test_repair_without_correlation(self, tmp_path, capsys):
        path = _write_book(tmp_path, correlation=None)
        assert risk_desk.main(["repair", path]) == 0

    def test_missing_file(self, tmp_path, capsys):
        assert risk_desk.main(["simulate", str(tmp_path / "nope.json")]) == 1
        assert "Error" in capsys.readouterr().out

    def test_bad_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert risk_desk.main(["simulate", str(path)]) == 1

    def test_mismatched_correlation(self, tmp_path, capsys):
        path = _write_book(tmp_path, correlation=[[1.0, 0.2], [0.2, 1.0]])
        assert risk_desk.main(["simulate", path, "--paths", "100"]) == 1
        assert "does not match" in capsys.readouterr().out

    def test_ragged_correlation(self, tmp_path, capsys):
        path = _write_book(tmp_path, correlation=[[1.0, 0.2, 0.1], [0.2, 1.0], [0.1]])
        assert risk_desk.main(["simulate", path, "--paths", "100"]) == 1
        assert "numeric grid" in capsys.readouterr().out

    def test_position_without_ticker(self, tmp_path, capsys):
        path = tmp_path / "book.json"
        path.write_text(json.dumps({"positions": [{"quantity": 1, "price": 1}]}))
        assert risk_desk.main(["simulate", str(path)]) == 1
        assert "ticker" in capsys.readouterr().out

    def test_non_numeric_price(self, tmp_path, capsys):
        path = tmp_path / "book.json"
        path.write_text(json.dumps({"positions": [{"ticker": "X", "quantity": 1, "price": "n/a"}]}))
        assert risk_desk.main(["simulate", str(path)]) == 1
        assert "X.price" in capsys.readouterr().out
