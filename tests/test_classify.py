import pytest

from cloudprovision.executor.classify import ClassificationRule, ErrorClassifier, classify, contains_any
from cloudprovision.executor.schema import ErrorCategory

SERVICE_DISABLED = "SERVICE_DISABLED: Compute Engine API has not been used in project 123 before"
PERMISSION = "PERMISSION_DENIED: caller does not have permission"
BACKGROUND = "operation is running in the background and will complete automatically"


def test_service_disabled_is_capability_propagating():
    assert classify(SERVICE_DISABLED) == ErrorCategory.CAPABILITY_PROPAGATING


def test_permission_denied():
    assert classify(PERMISSION) == ErrorCategory.PERMISSION_DENIED


def test_background_operation_accepted_for_long_running_folders():
    assert classify(BACKGROUND, is_long_running=True) == ErrorCategory.ASYNC_OPERATION_ACCEPTED


def test_background_phrase_ignored_for_short_lived_folders():
    assert classify(BACKGROUND, is_long_running=False) == ErrorCategory.UNCLASSIFIED


def test_taking_longer_than_expected_is_in_progress():
    text = "Error: the operation is taking longer than expected but was submitted successfully"
    assert classify(text, is_long_running=True) == ErrorCategory.ASYNC_OPERATION_IN_PROGRESS


@pytest.mark.parametrize(
    "text",
    [
        "Error 403: Compute Engine API has not been used in project 42. PERMISSION_DENIED",
        "googleapi: Error 403: SERVICE_DISABLED, caller does not have permission",
        "wait a few minutes for the action to propagate; Permission denied",
        "SERVICE_DISABLED ... operation is running in the background",
    ],
)
def test_capability_phrase_wins_over_later_phrases(text):
    assert classify(text, is_long_running=True) == ErrorCategory.CAPABILITY_PROPAGATING


def test_matching_is_case_sensitive():
    assert classify("service_disabled") == ErrorCategory.UNCLASSIFIED


@pytest.mark.parametrize("text", ["", "Error: Invalid value for variable", "exit status 1"])
def test_unknown_text_is_unclassified(text):
    assert classify(text) == ErrorCategory.UNCLASSIFIED


def test_classifier_is_deterministic():
    classifier = ErrorClassifier()
    assert {classifier.classify(PERMISSION) for _ in range(5)} == {ErrorCategory.PERMISSION_DENIED}


def test_custom_rule_table():
    classifier = ErrorClassifier(
        rules=[ClassificationRule(ErrorCategory.CAPABILITY_PROPAGATING, [contains_any("quota not ready")])]
    )
    assert classifier.classify("quota not ready yet") == ErrorCategory.CAPABILITY_PROPAGATING
    assert classifier.classify(PERMISSION) == ErrorCategory.UNCLASSIFIED
