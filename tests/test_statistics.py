"""Tests for case classification and bias indicators."""

from datetime import date

import pytest

from judgeindex.analysis.statistics import bias_indicators, classify, normalize_outcome, tally
from judgeindex.analysis.types import CaseRecord


class TestClassify:
    @pytest.mark.parametrize(
        "case, expected",
        [
            (
                CaseRecord(case_type="Civil", outcome="Judgment for plaintiff"),
                {"civil_plaintiff_favor": True},
            ),
            (CaseRecord(case_type="Civil", outcome="Dismissed"), {"civil_plaintiff_favor": False}),
            (
                CaseRecord(case_type="Felony", outcome="Sentenced to 5 years in prison"),
                {"criminal_sentencing_severity": True},
            ),
            (
                CaseRecord(summary="The court granted the motion to compel"),
                {"motion_grant_rate": True},
            ),
            (CaseRecord(case_type="Probate", outcome="Closed"), {}),
        ],
    )
    def test_single_metric_cases(self, case, expected):
        assert classify(case) == expected

    def test_family_case_counts_for_custody_and_alimony(self):
        result = classify(CaseRecord(case_type="Family", outcome="Custody to mother"))

        assert result == {"family_custody_mother": True, "family_alimony_favorable": False}

    def test_decided_contract_is_enforced_unless_dismissed(self):
        upheld = CaseRecord(case_type="Contract", outcome="Affirmed", status="decided")
        dismissed = CaseRecord(case_type="Contract", outcome="Dismissed", status="decided")

        assert classify(upheld)["contract_enforcement_rate"] is True
        assert classify(dismissed)["contract_enforcement_rate"] is False

    def test_remand_is_not_a_release(self):
        case = CaseRecord(case_type="Criminal", outcome="Remanded to custody", summary="bail hearing")

        result = classify(case)

        assert result["bail_release_rate"] is False
        assert result["criminal_sentencing_severity"] is False

    def test_settlement_needs_a_settlement_mention(self):
        settled = CaseRecord(
            case_type="Tort", outcome="Parties settled", summary="settlement conference held"
        )
        silent = CaseRecord(case_type="Tort", outcome="Parties settled")

        assert classify(settled)["settlement_encouragement_rate"] is True
        assert classify(settled)["civil_plaintiff_favor"] is False
        assert "settlement_encouragement_rate" not in classify(silent)


class TestTally:
    def test_counts_hits_per_metric(self):
        cases = [
            CaseRecord(case_type="Civil", outcome="Judgment for plaintiff"),
            CaseRecord(case_type="Civil", outcome="Awarded damages"),
            CaseRecord(case_type="Civil", outcome="Dismissed"),
        ]

        tallies = tally(cases, ["civil_plaintiff_favor", "appeal_reversal_rate"])

        assert tallies["civil_plaintiff_favor"].total == 3
        assert tallies["civil_plaintiff_favor"].hits == 2
        assert tallies["appeal_reversal_rate"].ratio is None

    def test_ignores_unrequested_metrics(self):
        tallies = tally([CaseRecord(case_type="Civil", outcome="Dismissed")], ["motion_grant_rate"])

        assert set(tallies) == {"motion_grant_rate"}


def test_normalize_outcome():
    assert normalize_outcome("Settled out of court") == "settled"
    assert normalize_outcome("Dismissed with prejudice") == "dismissed"
    assert normalize_outcome("Summary judgment") == "judgment"
    assert normalize_outcome(None) == "other"


class TestBiasIndicators:
    def test_no_cases(self):
        assert bias_indicators([]) is None

    @pytest.mark.parametrize("count, predictability", [(10, 50.0), (100, 80.0), (500, 100.0)])
    def test_predictability_is_damped_for_small_datasets(self, count, predictability):
        cases = [CaseRecord(case_type="Civil", outcome="Dismissed") for _ in range(count)]

        indicators = bias_indicators(cases)

        assert indicators.consistency_score == 100.0
        assert indicators.predictability_score == predictability
        assert indicators.settlement_preference == -50.0

    def test_scores_across_case_types(self):
        filed, decided = date(2024, 1, 1), date(2024, 3, 1)
        cases = [
            CaseRecord(
                case_type="Civil",
                outcome="Settled",
                case_value=200_000,
                filing_date=filed,
                decision_date=decided,
            )
            for _ in range(2)
        ] + [
            CaseRecord(case_type="Criminal", outcome="Guilty", filing_date=filed, decision_date=decided)
            for _ in range(2)
        ]

        indicators = bias_indicators(cases)

        assert indicators.consistency_score == 75.0
        assert indicators.predictability_score == 37.5
        assert indicators.settlement_preference == 0.0
        assert indicators.speed_score == 66.7
        assert indicators.risk_tolerance == 50.0
