"""Tests for src/analysis/schema.py: provider reply parsing and normalization."""

import pytest

from src.analysis.schema import (
    GROUP_TONE_PLACEHOLDER,
    clamp_int,
    normalize_result,
    parse_provider_json,
)
from src.errors import MalformedProviderResponse
from src.models import AnalysisRequest


def _tone(**extra):
    tone = {"overallTone": "Warm and supportive", "emotionalState": [{"emotion": "joy", "intensity": 7}]}
    tone.update(extra)
    return tone


class TestParseProviderJson:

    def test_plain_json(self):
        assert parse_provider_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"toneAnalysis": {"overallTone": "calm"}}\n```'
        assert parse_provider_json(text)["toneAnalysis"]["overallTone"] == "calm"

    def test_leading_and_trailing_prose(self):
        assert parse_provider_json('Sure! {"a": {"b": 2}} Hope this helps.') == {"a": {"b": 2}}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]", '{"a": ', "{'a': 1}"])
    def test_malformed(self, text):
        with pytest.raises(MalformedProviderResponse):
            parse_provider_json(text)


class TestNormalizeResult:

    def test_requires_tone_analysis(self):
        with pytest.raises(MalformedProviderResponse):
            normalize_result({"communication": {"patterns": []}})
        with pytest.raises(MalformedProviderResponse):
            normalize_result({"toneAnalysis": {"overallTone": "  "}})
        with pytest.raises(MalformedProviderResponse):
            normalize_result({"toneAnalysis": "happy"})

    def test_unknown_keys_and_nones_dropped(self):
        result = normalize_result({
            "toneAnalysis": _tone(participantTones=None),
            "secretField": "x",
            "dramaScore": None,
            "tensionMeaning": None,
        })
        assert "secretField" not in result
        assert "dramaScore" not in result
        assert "tensionMeaning" not in result
        assert "participantTones" not in result["toneAnalysis"]

    def test_communication_always_present(self):
        result = normalize_result({"toneAnalysis": _tone()})
        assert result["communication"] == {"patterns": []}

    def test_clamps(self):
        result = normalize_result({
            "toneAnalysis": _tone(emotionalState=[
                {"emotion": "anger", "intensity": 0.8},
                {"emotion": "joy", "intensity": 42},
                {"intensity": 3},
            ]),
            "redFlags": [
                {"type": "Gaslighting", "description": "x", "severity": 15},
                {"type": "Avoidance", "severity": "2"},
                "not a flag",
            ],
            "healthScore": {"score": 140},
            "dramaScore": -3,
            "manipulationScores": {"Alex": {"score": 55}, "Sam": "n/a"},
        })
        states = result["toneAnalysis"]["emotionalState"]
        assert [s["intensity"] for s in states] == [8, 10]
        assert [f["severity"] for f in result["redFlags"]] == [10, 2]
        assert result["redFlags"][1]["description"] == ""
        assert result["healthScore"] == {"score": 100, "label": "Very Healthy", "color": "green"}
        assert result["dramaScore"] == 0
        assert result["manipulationScores"] == {"Alex": {"score": 10}}

    def test_unusable_health_score_dropped(self):
        result = normalize_result({"toneAnalysis": _tone(), "healthScore": {"score": "great"}})
        assert "healthScore" not in result

    def test_wrong_section_types_dropped(self):
        result = normalize_result({
            "toneAnalysis": _tone(),
            "redFlags": {"type": "x"},
            "keyQuotes": "quote",
            "powerDynamics": ["x"],
        })
        assert "redFlags" not in result
        assert "keyQuotes" not in result
        assert "powerDynamics" not in result

    def test_group_participant_tones_completed(self):
        request = AnalysisRequest(
            conversation_text="x",
            participant_labels=["Alex", "Sam", "Jo"],
            conversation_type="group",
        )
        result = normalize_result(
            {"toneAnalysis": _tone(participantTones={"Alex": "Direct"})}, request,
        )
        tones = result["toneAnalysis"]["participantTones"]
        assert tones == {"Alex": "Direct", "Sam": GROUP_TONE_PLACEHOLDER, "Jo": GROUP_TONE_PLACEHOLDER}
        assert result["conversationType"] == "group"
        assert result["participants"] == ["Alex", "Sam", "Jo"]

    def test_input_not_mutated(self):
        raw = {"toneAnalysis": _tone(), "redFlags": [{"type": "X", "severity": 99}]}
        normalize_result(raw)
        assert raw["redFlags"][0]["severity"] == 99


@pytest.mark.parametrize("value,expected", [
    (5, 5), ("7", 7), (2.5, 3), (-1, 0), (11, 10), (None, None), ("abc", None), (True, None),
    (float("nan"), None),
])
def test_clamp_int(value, expected):
    assert clamp_int(value, 0, 10) == expected


class TestDeepDiveSections:

    def test_full_only_sections_kept(self):
        result = normalize_result({
            "toneAnalysis": _tone(),
            "psychologicalProfile": {"Alex": {"behavior": "Guarded", "emotionalState": "Tense",
                                              "riskIndicators": "None"}},
            "redFlagsTimeline": {"overview": "Escalates late", "progression": [], "escalationPoints": []},
            "relationshipHealthIndicators": {"currentScore": 40, "currentLabel": "Tense"},
            "personalizedGrowthRecommendations": {"Sam": [{"area": "Listening", "recommendation": "Pause"}]},
            "communicationPatternComparison": {"Alex": [{"pattern": "Deflects", "example": "whatever"}]},
        })
        assert result["psychologicalProfile"]["Alex"]["behavior"] == "Guarded"
        assert result["redFlagsTimeline"]["overview"] == "Escalates late"
        assert result["relationshipHealthIndicators"]["currentScore"] == 40
        assert "Sam" in result["personalizedGrowthRecommendations"]
        assert "Alex" in result["communicationPatternComparison"]

    def test_wrong_types_dropped(self):
        result = normalize_result({"toneAnalysis": _tone(), "psychologicalProfile": "guarded"})
        assert "psychologicalProfile" not in result


class TestEmpatheticSummary:

    def test_per_participant_form(self):
        summary = {
            "Alex": {"summary": "Feels unheard.", "insights": "...", "growthAreas": [], "strengths": []},
            "Sam": {"summary": "Feels blamed.", "insights": "...", "growthAreas": [], "strengths": []},
        }
        result = normalize_result({"toneAnalysis": _tone(), "empatheticSummary": summary})
        assert result["empatheticSummary"] == summary

    def test_string_form(self):
        result = normalize_result({"toneAnalysis": _tone(), "empatheticSummary": "Both care."})
        assert result["empatheticSummary"] == "Both care."

    @pytest.mark.parametrize("value", ["   ", {}, ["a"], {"Alex": 3}])
    def test_unusable_dropped(self, value):
        result = normalize_result({"toneAnalysis": _tone(), "empatheticSummary": value})
        assert "empatheticSummary" not in result


class TestRedFlagTeaser:

    def test_derived_from_flag_list(self):
        result = normalize_result({
            "toneAnalysis": _tone(),
            "redFlags": [{"type": "Gaslighting", "severity": 6}, {"type": "Contempt", "severity": 4}],
            "redFlagCount": 9,
        })
        assert result["redFlagsDetected"] is True
        assert result["redFlagCount"] == 2

    def test_empty_flag_list(self):
        result = normalize_result({"toneAnalysis": _tone(), "redFlags": []})
        assert result["redFlagsDetected"] is False
        assert result["redFlagCount"] == 0

    def test_bare_count_accepted(self):
        result = normalize_result({"toneAnalysis": _tone(), "redFlagCount": "3"})
        assert result["redFlagsDetected"] is True
        assert result["redFlagCount"] == 3

    def test_absent_without_flags_or_count(self):
        result = normalize_result({"toneAnalysis": _tone(), "redFlagCount": "many"})
        assert "redFlagsDetected" not in result
        assert "redFlagCount" not in result
