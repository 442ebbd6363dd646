from __future__ import annotations

import pytest

from spanmark.labels import DocumentLabels, check_label_value, is_completed


def test_non_covert_cot_label_clears_covert_fields() -> None:
    labels = DocumentLabels()
    labels.set_cot_label("scheming_covert")
    labels.set_cot_covert_type("hide")
    labels.set_cot_hide_confidence("high")

    labels.set_cot_label("scheming_long_term")

    assert labels.cot_covert_type is None
    assert labels.cot_hide_confidence is None


def test_justify_clears_hide_confidence() -> None:
    labels = DocumentLabels(cot_label="scheming_covert", cot_covert_type="hide", cot_hide_confidence="low")
    labels.set_cot_covert_type("justify")
    assert labels.cot_hide_confidence is None


def test_action_label_switch_reports_malicious_drop() -> None:
    labels = DocumentLabels()
    assert labels.set_action_label("covert_malicious") is False
    labels.set_covert_action_confidence("high")

    assert labels.set_action_label("malicious") is False
    assert labels.covert_action_confidence is None
    assert labels.set_action_label("no_malicious") is True
    assert labels.set_action_label("no_malicious") is False


def test_unknown_values_are_rejected() -> None:
    labels = DocumentLabels()
    with pytest.raises(ValueError):
        labels.set_cot_label("maybe")
    with pytest.raises(ValueError):
        labels.set_action_label("evil")
    with pytest.raises(ValueError):
        labels.set_covert_action_confidence("medium")


@pytest.mark.parametrize(
    ("labels", "expected"),
    [
        (None, False),
        (DocumentLabels(cot_label="no_scheming"), False),
        (DocumentLabels(cot_label="no_scheming", action_label="no_malicious"), True),
        (DocumentLabels(cot_label="scheming_covert", action_label="no_malicious", cot_covert_type="hide"), False),
        (
            DocumentLabels(
                cot_label="scheming_covert",
                action_label="no_malicious",
                cot_covert_type="hide",
                cot_hide_confidence="low",
            ),
            True,
        ),
        (DocumentLabels(cot_label="scheming_covert", action_label="no_malicious", cot_covert_type="justify"), True),
        (DocumentLabels(cot_label="unfaithful", action_label="covert_malicious"), False),
        (
            DocumentLabels(cot_label="unfaithful", action_label="covert_malicious", covert_action_confidence="high"),
            True,
        ),
    ],
)
def test_is_completed(labels: DocumentLabels | None, expected: bool) -> None:
    assert is_completed(labels) is expected


def test_highlight_gates_follow_labels() -> None:
    labels = DocumentLabels(cot_label="no_scheming", action_label="malicious")
    assert labels.allows_cot_highlights is False
    assert labels.allows_action_highlights is True


def test_payload_accepts_legacy_time_keys_and_drops_bad_values() -> None:
    labels = DocumentLabels.from_payload(
        {"cot_label": "unfaithful", "action_label": "bogus", "startTime": "2024-05-01T10:00:00Z", "totalTime": 42.7}
    )
    assert labels.cot_label == "unfaithful"
    assert labels.action_label is None
    assert labels.start_time == "2024-05-01T10:00:00Z"
    assert labels.total_time == 42
    assert labels.to_payload()["cot_label"] == "unfaithful"


@pytest.mark.parametrize("total_time", [float("inf"), float("-inf"), float("nan"), -5, True, "12"])
def test_payload_total_time_falls_back_to_zero(total_time: object) -> None:
    assert DocumentLabels.from_payload({"total_time": total_time}).total_time == 0


def test_check_label_value() -> None:
    assert check_label_value("cot_covert_type", "hide") == "hide"
    with pytest.raises(ValueError, match="Unknown action label: bogus"):
        check_label_value("action_label", "bogus")
    with pytest.raises(ValueError):
        check_label_value("cot_hide_confidence", None)
