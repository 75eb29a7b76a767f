"""Tests for service, plan and cluster identifiers."""

import itertools

import pytest

from atlas_broker.ids import cluster_name, normalize, plan_id, service_id

# --- normalize ---


class TestNormalize:
    def test_lowercases(self):
        assert normalize("Alpha") == "alpha"

    def test_collapses_forbidden_runs(self):
        assert normalize("team a / prod!!") == "team_a_prod_"

    def test_keeps_hyphens_and_digits(self):
        assert normalize("m10-nvme-2") == "m10-nvme-2"

    @pytest.mark.parametrize("raw", ["My Team", "a..b", "ÄÖÜ", "x__y", "", "--"])
    def test_idempotent(self, raw: str):
        once = normalize(raw)
        assert normalize(once) == once

    @pytest.mark.parametrize("raw", ["Hello World!", "émoji 🎉", "Tab\tNew\nLine"])
    def test_output_alphabet(self, raw: str):
        allowed = set("abcdefghijklmnopqrstuvwxyz0123456789-_")
        assert set(normalize(raw)) <= allowed


# --- service and plan IDs ---


class TestServiceID:
    def test_format(self):
        assert service_id("AWS") == "aosb-cluster-service-aws"

    def test_shared_provider(self):
        assert service_id("TENANT") == "aosb-cluster-service-tenant"


class TestPlanID:
    def test_without_project(self):
        assert plan_id("AWS", "M10") == "aosb-cluster-plan-aws-m10"

    def test_with_project(self):
        assert plan_id("AWS", "M10", "p1") == "aosb-cluster-plan-aws-m10-p1"

    def test_empty_project_means_no_suffix(self):
        assert plan_id("GCP", "M30", "") == plan_id("GCP", "M30")

    def test_deterministic(self):
        assert plan_id("AZURE", "M20", "5e2f") == plan_id("AZURE", "M20", "5e2f")

    def test_distinct_triples_do_not_collide(self):
        providers = ["AWS", "GCP", "AZURE", "TENANT"]
        sizes = ["M2", "M5", "M10", "M20", "M30", "M40"]
        projects = ["", "5ea0477597999053a5f9cbec", "5ea0477597999053a5f9cbed"]
        triples = list(itertools.product(providers, sizes, projects))
        ids = {plan_id(*t) for t in triples}
        assert len(ids) == len(triples)


# --- cluster names ---


class TestClusterName:
    def test_short_id_unchanged(self):
        assert cluster_name("instance-1") == "instance-1"

    def test_long_id_truncated(self):
        name = cluster_name("a" * 40)
        assert name == "a" * 23
