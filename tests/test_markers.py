"""Tests for the marker test entry point and the batch random-effect test."""

import logging
import warnings
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from scexplore import find_markers
from scexplore.markers import (
    ConfigurationError,
    FeatureFit,
    MarkerTestParameters,
    ModelFitError,
    assemble_results,
    binomial,
    coerce_failed_pvalues,
    find_markers_with_parameters,
    get_test_strategy,
)

SCENARIO_GENES = ["G1", "G2", "G3", "G4"]


def two_batch_design(n=40):
    """Detection in most group A cells and few group B cells, over two batches."""
    in_group_a = np.arange(n) < n // 2
    expressed = np.where(in_group_a, np.arange(n) % 5 != 0, np.arange(n) % 5 == 0)
    batch = np.where(np.arange(n) % 2 == 0, "b1", "b2")
    return expressed, in_group_a, batch


def run_scenario(adata, **kwargs):
    options = dict(
        ident_use="cluster",
        labels_a=["X"],
        labels_b=["Y"],
        thresh_use=0.25,
        min_pct=0.1,
        genes_use=SCENARIO_GENES,
        batch_key="batch",
    )
    options.update(kwargs)
    return find_markers(adata, **options)


class TestBinomialBatchScenario:
    """Two groups, one separating feature, one null feature, two filtered."""

    def test_rows(self, marker_adata):
        result = run_scenario(marker_adata)

        assert list(result.columns) == ["avg_diff", "pct.1", "pct.2", "p_val", "q_val"]
        assert list(result.index) == ["G1", "G2"]
        assert result.index.name == "feature"

    def test_separating_feature_is_significant(self, marker_adata):
        result = run_scenario(marker_adata)

        assert result.loc["G1", "avg_diff"] == pytest.approx(2.0)
        assert result.loc["G1", "pct.1"] == pytest.approx(1.0)
        assert result.loc["G1", "pct.2"] == pytest.approx(0.0)
        assert result.loc["G1", "p_val"] < 0.01
        assert result.loc["G1", "q_val"] < 0.05

    def test_null_feature_is_not_significant(self, marker_adata):
        result = run_scenario(marker_adata)

        assert result.loc["G2", "avg_diff"] == pytest.approx(0.5)
        assert result.loc["G2", "pct.1"] == pytest.approx(0.5)
        assert result.loc["G2", "pct.2"] == pytest.approx(0.5)
        assert result.loc["G2", "p_val"] > 0.9
        assert result.loc["G2", "q_val"] > 0.9

    def test_attrs(self, marker_adata):
        result = run_scenario(marker_adata)

        assert result.attrs["n_failed"] == 0
        assert result.attrs["label_a"] == "X"
        assert result.attrs["label_b"] == "Y"
        assert result.attrs["n_a"] == 40
        assert result.attrs["n_b"] == 40
        assert result.attrs["test_use"] == "binomial_batch"

    def test_rank_by_pct(self, marker_adata):
        result = run_scenario(marker_adata, rank_by="pct.2")

        assert list(result.index) == ["G2", "G1"]

    def test_input_not_modified(self, marker_adata):
        obs_before = marker_adata.obs.copy()

        run_scenario(marker_adata, labels_a=["X", "Z"])

        pd.testing.assert_frame_equal(marker_adata.obs, obs_before)

    def test_idempotent(self, marker_adata):
        first = run_scenario(marker_adata)
        second = run_scenario(marker_adata)

        pd.testing.assert_frame_equal(first, second)

    def test_parallel_matches_serial(self, marker_adata):
        serial = run_scenario(marker_adata, n_jobs=1)
        parallel = run_scenario(marker_adata, n_jobs=2)

        pd.testing.assert_frame_equal(serial, parallel)

    def test_batch_key_autodetected(self, marker_adata):
        marker_adata.obs["orig.ident"] = marker_adata.obs["batch"]

        result = run_scenario(marker_adata, batch_key=None)

        assert result.attrs["batch_key"] == "orig.ident"

    def test_default_candidates_are_all_genes(self, marker_adata):
        result = run_scenario(marker_adata, genes_use=None)

        assert "G3" not in result.index
        assert {"G1", "G2"} <= set(result.index)


class TestFailureHandling:
    """Per-feature fit failures are isolated and counted."""

    def test_all_fits_fail(self, marker_adata, monkeypatch):
        def always_fail(expressed, in_group_a, batch, feature="feature"):
            raise ModelFitError(feature, "did not converge")

        monkeypatch.setattr(binomial, "fit_binomial_batch", always_fail)

        result = run_scenario(marker_adata)

        assert len(result) == 2
        assert (result["p_val"] == 1.0).all()
        assert (result["q_val"] == 1.0).all()
        assert result.attrs["n_failed"] == len(result)

    def test_one_failure_does_not_stop_others(self, marker_adata, monkeypatch):
        original = binomial.fit_binomial_batch

        def fail_on_g1(expressed, in_group_a, batch, feature="feature"):
            if feature == "G1":
                raise np.linalg.LinAlgError("Singular matrix")
            return original(expressed, in_group_a, batch, feature=feature)

        monkeypatch.setattr(binomial, "fit_binomial_batch", fail_on_g1)

        result = run_scenario(marker_adata)

        assert result.attrs["n_failed"] == 1
        assert result.loc["G1", "p_val"] == 1.0
        assert result.loc["G2", "p_val"] > 0.9

    def test_failure_summary_logged_once(self, marker_adata, monkeypatch, caplog):
        def always_fail(expressed, in_group_a, batch, feature="feature"):
            raise ModelFitError(feature, "did not converge")

        monkeypatch.setattr(binomial, "fit_binomial_batch", always_fail)

        with caplog.at_level(logging.WARNING, logger="scexplore.markers.binomial"):
            run_scenario(marker_adata)

        summaries = [r for r in caplog.records if "Model fit failed" in r.getMessage()]
        assert len(summaries) == 1
        assert "2 of 2" in summaries[0].getMessage()

    def test_coerce_failed_pvalues(self):
        fits = [
            FeatureFit("a", p_val=0.01),
            FeatureFit("b", error="ModelFitError: separation"),
            FeatureFit("c", p_val=0.5),
        ]

        p_values, n_failed = coerce_failed_pvalues(fits)

        np.testing.assert_array_equal(p_values, [0.01, 1.0, 0.5])
        assert n_failed == 1

    def test_non_convergence_is_a_fit_failure(self, monkeypatch):
        def fit_vb_without_convergence(self, *args, **kwargs):
            warnings.warn("VB fitting did not converge", ConvergenceWarning)
            return SimpleNamespace(fe_mean=np.array([0.0, 1.0]), fe_sd=np.array([1.0, 0.5]))

        monkeypatch.setattr(BinomialBayesMixedGLM, "fit_vb", fit_vb_without_convergence)

        fit = binomial.evaluate_feature("slow", *two_batch_design())

        assert not fit.ok
        assert "did not converge" in fit.error

    @pytest.mark.parametrize("fe_sd", [0.0, np.nan])
    def test_degenerate_estimate_is_a_fit_failure(self, monkeypatch, fe_sd):
        def fit_vb_degenerate(self, *args, **kwargs):
            return SimpleNamespace(fe_mean=np.array([0.0, 1.0]), fe_sd=np.array([1.0, fe_sd]))

        monkeypatch.setattr(BinomialBayesMixedGLM, "fit_vb", fit_vb_degenerate)

        fit = binomial.evaluate_feature("flat", *two_batch_design())

        assert not fit.ok
        assert fit.p_val is None
        assert "degenerate estimate" in fit.error

    def test_real_fit_succeeds(self):
        fit = binomial.evaluate_feature("detected_in_a", *two_batch_design())

        assert fit.ok
        assert 0 <= fit.p_val < 0.05

    def test_constant_detection_is_a_fit_failure(self):
        expressed = np.ones(10, dtype=bool)
        in_group_a = np.arange(10) < 5
        batch = np.array(["b1", "b2"] * 5)

        fit = binomial.evaluate_feature("const", expressed, in_group_a, batch)

        assert not fit.ok
        assert fit.p_val is None
        assert "constant" in fit.error


class TestConfigurationErrors:
    """Invalid arguments fail before any feature is tested."""

    @pytest.fixture
    def no_fits(self, monkeypatch):
        def must_not_run(*args, **kwargs):
            raise AssertionError("feature tests should not run")

        monkeypatch.setattr(binomial, "run_feature_tests", must_not_run)

    def test_unknown_rank_by(self, marker_adata, no_fits):
        with pytest.raises(ConfigurationError, match="rank_by"):
            run_scenario(marker_adata, rank_by="logFC")

    def test_unknown_test_use(self, marker_adata, no_fits):
        with pytest.raises(ConfigurationError, match="test_use"):
            run_scenario(marker_adata, test_use="bimod")

    def test_missing_grouping_variable(self, marker_adata, no_fits):
        with pytest.raises(ConfigurationError, match="Grouping variable"):
            run_scenario(marker_adata, ident_use="celltype")

    def test_missing_batch_variable(self, marker_adata, no_fits):
        with pytest.raises(ConfigurationError, match="Batch column"):
            run_scenario(marker_adata, batch_key="donor")

    def test_no_batch_column_detected(self, marker_adata, no_fits):
        del marker_adata.obs["batch"]

        with pytest.raises(ConfigurationError, match="batch_key"):
            run_scenario(marker_adata, batch_key=None)

    def test_duplicated_var_names(self, marker_adata, no_fits):
        marker_adata.var_names = ["G1", "G2", "G1", "Noise"]

        with pytest.raises(ConfigurationError, match="var_names_make_unique"):
            find_markers(marker_adata, "cluster", ["X"], ["Y"], batch_key="batch")

    def test_invalid_threshold(self, marker_adata, no_fits):
        with pytest.raises(ConfigurationError, match="min_pct"):
            run_scenario(marker_adata, min_pct=5)

    def test_get_test_strategy(self):
        assert get_test_strategy("binomial_batch") is not get_test_strategy("wilcox")
        assert get_test_strategy("wilcox") is get_test_strategy("t")
        with pytest.raises(ConfigurationError):
            get_test_strategy("poisson")


class TestPrefilterProperty:
    """Only features passing both cutoffs reach the model fit."""

    def test_reported_features_pass_cutoffs(self, random_adata):
        result = find_markers(
            random_adata,
            ident_use="cluster",
            labels_a="A",
            thresh_use=0.2,
            min_pct=0.5,
            test_use="wilcox",
        )

        assert (result["avg_diff"].abs() > 0.2).all()
        assert ((result["pct.1"] > 0.5) | (result["pct.2"] > 0.5)).all()
        assert result["pct.1"].between(0, 1).all()
        assert result["pct.2"].between(0, 1).all()

    def test_disabled_cutoffs_keep_everything(self, random_adata):
        result = find_markers(
            random_adata,
            ident_use="cluster",
            labels_a="A",
            labels_b=["B", "C"],
            thresh_use=None,
            min_pct=None,
            test_use="t",
        )

        assert len(result) == random_adata.n_vars
        assert result.attrs["label_b"] == "B_C"


class TestGenericDelegation:
    """Other test names are delegated to scanpy."""

    def test_wilcox_scenario(self, marker_adata):
        result = run_scenario(marker_adata, test_use="wilcox", batch_key=None)

        assert list(result.index) == ["G1", "G2"]
        assert list(result.columns) == ["avg_diff", "pct.1", "pct.2", "p_val", "q_val"]
        assert result.loc["G1", "p_val"] < 0.01
        assert result.attrs["n_failed"] == 0
        assert result.attrs["batch_key"] is None

    def test_with_parameters_object(self, marker_adata):
        params = MarkerTestParameters(
            ident_use="cluster",
            labels_a=["X"],
            labels_b=["Y"],
            test_use="wilcoxon",
            genes_use=SCENARIO_GENES,
        )

        result = find_markers_with_parameters(marker_adata, params)

        assert set(result.index) == {"G1", "G2"}
        assert result["q_val"].between(0, 1).all()


class TestAssembleResults:
    """Result assembly: naming, q-values and ranking."""

    def test_normalizes_p_value_column(self):
        table = pd.DataFrame(
            {"avg_diff": [1.0, 2.0], "pct.1": [0.5, 0.6], "pct.2": [0.1, 0.2], "p.value": [0.01, 0.04]},
            index=["a", "b"],
        )

        result = assemble_results(table)

        assert "p_val" in result.columns
        assert "p.value" not in result.columns
        assert list(result.index) == ["b", "a"]
        np.testing.assert_allclose(result.loc[["a", "b"], "q_val"], [0.02, 0.04])

    def test_stable_ties(self):
        table = pd.DataFrame(
            {
                "avg_diff": [1.0, 1.0, 3.0, 1.0],
                "pct.1": [0.5] * 4,
                "pct.2": [0.1] * 4,
                "p_val": [0.1, 0.2, 0.3, 0.4],
            },
            index=["w", "x", "y", "z"],
        )

        result = assemble_results(table, rank_by="avg_diff")

        assert list(result.index) == ["y", "w", "x", "z"]

    def test_empty_table(self):
        table = pd.DataFrame(columns=["avg_diff", "pct.1", "pct.2", "p_val"], dtype=float)

        result = assemble_results(table)

        assert result.empty
        assert list(result.columns) == ["avg_diff", "pct.1", "pct.2", "p_val", "q_val"]
