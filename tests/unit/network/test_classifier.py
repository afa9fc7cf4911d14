# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the outcome classification chain.
"""

from unittest.mock import MagicMock

import pytest

from asyncrequest.errors import TransportError
from asyncrequest.network.classifier import (
    ClassifierLink,
    ClassifierLinkKind,
    OutcomeClassifier,
    default_classification,
)
from asyncrequest.network.envelope import (
    Classification,
    ResponseEnvelope,
    ResponseMetadata,
    Verdict,
)


def envelope(status=200, payload=b"body", error=None):
    metadata = ResponseMetadata(status_code=status) if status is not None else None
    return ResponseEnvelope(payload=payload, metadata=metadata, error=error)


class TestDefaultClassification:
    def test_accepts_without_error(self):
        result = default_classification(envelope(status=500))
        assert result.is_accepted

    def test_rejects_with_error(self):
        result = default_classification(
            envelope(status=None, error=TransportError("timeout"))
        )
        assert result.is_rejected

    def test_empty_chain_uses_default(self):
        classifier = OutcomeClassifier()
        ok = envelope()

        assert classifier.classify(None, ok) == Classification.accepted(ok)
        assert classifier.classify(
            None, envelope(error=TransportError("reset"))
        ).is_rejected


class TestStatusAllowList:
    def test_rejects_outside_and_stops(self):
        downstream = MagicMock(return_value=False)
        classifier = (
            OutcomeClassifier().allowed_status_codes(range(200, 300)).reject_if(downstream)
        )

        result = classifier.classify(None, envelope(status=404))

        assert result.is_rejected
        downstream.assert_not_called()

    def test_defers_inside(self):
        downstream = MagicMock(return_value=False)
        classifier = (
            OutcomeClassifier().allowed_status_codes(range(200, 300)).reject_if(downstream)
        )

        result = classifier.classify(None, envelope(status=204))

        assert result.is_accepted
        downstream.assert_called_once()

    def test_inside_with_error_falls_to_default_rejection(self):
        classifier = OutcomeClassifier().allowed_status_codes(200)

        result = classifier.classify(
            None, envelope(status=200, error=TransportError("truncated"))
        )

        assert result.is_rejected

    def test_missing_metadata_is_rejected(self):
        classifier = OutcomeClassifier().allowed_status_codes(range(100, 600))

        assert classifier.classify(None, envelope(status=None)).is_rejected

    def test_mixed_codes_and_ranges(self):
        link = ClassifierLink.status_allow_list(200, range(300, 302), 404)
        assert link.allowed_status_codes == frozenset({200, 300, 301, 404})

    def test_requires_codes(self):
        with pytest.raises(ValueError):
            ClassifierLink.status_allow_list()


class TestRejectIf:
    def test_rejects_when_predicate_holds(self):
        classifier = OutcomeClassifier().reject_if(lambda e: e.payload == b"")

        assert classifier.classify(None, envelope(payload=b"")).is_rejected
        assert classifier.classify(None, envelope(payload=b"data")).is_accepted


class TestAcceptIf:
    def test_accepts_and_stops(self):
        downstream = MagicMock(return_value=True)
        classifier = (
            OutcomeClassifier()
            .accept_if(lambda e: e.http_status_code == 200)
            .reject_if(downstream)
        )

        assert classifier.classify(None, envelope(status=200)).is_accepted
        downstream.assert_not_called()

    def test_rejects_and_stops_when_predicate_fails(self):
        downstream = MagicMock(return_value=False)
        classifier = (
            OutcomeClassifier()
            .accept_if(lambda e: e.http_status_code == 200)
            .reject_if(downstream)
        )

        assert classifier.classify(None, envelope(status=201)).is_rejected
        downstream.assert_not_called()

    def test_accept_overrides_transport_error(self):
        classifier = OutcomeClassifier().accept_if(lambda e: True)

        result = classifier.classify(None, envelope(error=TransportError("late")))

        assert result.is_accepted


class TestCustom:
    def test_rejection_stops(self):
        downstream = MagicMock(return_value=False)
        classifier = (
            OutcomeClassifier()
            .custom(lambda request, e: Verdict.REJECTED)
            .reject_if(downstream)
        )

        assert classifier.classify(None, envelope()).is_rejected
        downstream.assert_not_called()

    def test_acceptance_defers(self):
        downstream = MagicMock(return_value=True)
        classifier = (
            OutcomeClassifier()
            .custom(lambda request, e: Verdict.ACCEPTED)
            .reject_if(downstream)
        )

        assert classifier.classify(None, envelope()).is_rejected
        downstream.assert_called_once()

    def test_receives_request(self):
        request = object()
        decision = MagicMock(return_value=True)
        classifier = OutcomeClassifier().custom(decision)
        target = envelope()

        classifier.classify(request, target)

        decision.assert_called_once_with(request, target)

    @pytest.mark.parametrize(
        "result, expected",
        [
            (True, Verdict.ACCEPTED),
            (False, Verdict.REJECTED),
            ("accepted", Verdict.ACCEPTED),
            ("rejected", Verdict.REJECTED),
        ],
    )
    def test_result_forms(self, result, expected):
        classifier = OutcomeClassifier().custom(lambda request, e: result)

        assert classifier.classify(None, envelope()).verdict is expected

    def test_classification_result(self):
        classifier = OutcomeClassifier().custom(
            lambda request, e: Classification.rejected(e)
        )

        assert classifier.classify(None, envelope()).is_rejected


def test_link_error_rejects(caplog):
    def broken(e):
        raise KeyError("missing")

    classifier = OutcomeClassifier().reject_if(broken)

    assert classifier.classify(None, envelope()).is_rejected
    assert "raised; rejecting" in caplog.text


def test_classification_keeps_envelope():
    target = envelope(status=404)
    classifier = OutcomeClassifier().allowed_status_codes(200)

    assert classifier.classify(None, target).envelope is target


def test_chain_building():
    classifier = OutcomeClassifier().allowed_status_codes(200).accept_if(
        lambda e: True, name="always"
    )
    other = OutcomeClassifier().reject_if(lambda e: False)

    classifier.add_next(other)

    assert len(classifier) == 3
    assert [link.kind for link in classifier.links] == [
        ClassifierLinkKind.STATUS_ALLOW_LIST,
        ClassifierLinkKind.ACCEPT_IF,
        ClassifierLinkKind.REJECT_IF,
    ]
    assert classifier.links[1].label == "always"
    assert classifier.links[2].label == "reject_if"
    assert "always" in repr(classifier)
