"""Tests for src/models.py: request parsing and validation."""

import pytest

from src.errors import InvalidRequest
from src.models import AnalysisRequest, AnonymousDevice, RegisteredUser


class TestFromDict:

    def test_camel_case_payload(self):
        req = AnalysisRequest.from_dict({
            "conversationText": "Alex: hi\nSam: hey",
            "participantLabels": ["Alex ", "Sam"],
            "tier": "pro",
        })
        assert req.participant_labels == ["Alex", "Sam"]
        assert req.conversation_type == "dyad"
        assert req.tier == "pro"

    def test_me_them_pair(self):
        req = AnalysisRequest.from_dict({"conversation": "x", "me": "Alex", "them": "Sam"})
        assert req.participant_labels == ["Alex", "Sam"]
        assert req.conversation_text == "x"

    def test_more_than_two_labels_defaults_to_group(self):
        req = AnalysisRequest.from_dict({"conversationText": "x", "participantLabels": ["A", "B", "C"]})
        assert req.is_group

    @pytest.mark.parametrize("payload", [
        [],
        {"conversationText": 42, "participantLabels": ["A", "B"]},
        {"conversationText": "x", "participantLabels": "A,B"},
        {"conversationText": "x", "participantLabels": ["A", 2]},
    ])
    def test_structural_errors(self, payload):
        with pytest.raises(InvalidRequest):
            AnalysisRequest.from_dict(payload)


class TestValidate:

    @pytest.mark.parametrize("text,labels,ctype", [
        ("   ", ["A", "B"], "dyad"),
        ("hi", ["A", "B", "C"], "dyad"),
        ("hi", ["A"], "group"),
        ("hi", ["A", "a"], "dyad"),
        ("hi", ["A", ""], "dyad"),
        ("hi", ["A", "B"], "meeting"),
    ])
    def test_invalid(self, text, labels, ctype):
        req = AnalysisRequest(conversation_text=text, participant_labels=labels, conversation_type=ctype)
        with pytest.raises(InvalidRequest):
            req.validate()

    def test_valid_group(self):
        AnalysisRequest(conversation_text="hi", participant_labels=["A", "B"], conversation_type="group").validate()


def test_identity_keys():
    assert RegisteredUser("42", "pro").key == "user:42"
    assert AnonymousDevice("abc").key == "device:abc"
    assert RegisteredUser("1").tier == "free"
