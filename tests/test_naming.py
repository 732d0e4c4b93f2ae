"""Unit tests for image name validation."""

from __future__ import annotations

import pytest

from imagebuild.common.errors import InvalidImageName
from imagebuild.runtime.naming import NameValidator


def test_local_rule_rejects_more_than_one_tag() -> None:
    with pytest.raises(InvalidImageName):
        NameValidator().validate_local("repo:tag:extra")


def test_local_rule_accepts_mixed_case_name() -> None:
    NameValidator().validate_local("My_Repo-1")


@pytest.mark.parametrize("name", ["bad/name", "dots.are.out", "space here"])
def test_local_rule_rejects_other_characters(name: str) -> None:
    with pytest.raises(InvalidImageName):
        NameValidator().validate_local(name)


def test_registry_rule_reports_offending_fragment() -> None:
    with pytest.raises(InvalidImageName) as excinfo:
        NameValidator().validate_registry("My_Repo")

    assert "Offending fragment: 'My_R'" in str(excinfo.value)


def test_registry_rule_accepts_separators_after_first_run() -> None:
    NameValidator().validate_registry("my-repo.1_2")


def test_validate_applies_both_rules_per_component() -> None:
    validator = NameValidator()

    validator.validate("webapp:v1-2")
    assert validator.is_valid("webapp")
    assert not validator.is_valid("WebApp")
    assert not validator.is_valid("webapp:V1")
    assert not validator.is_valid("repo:tag:extra")


def test_validate_rejects_empty_name() -> None:
    with pytest.raises(InvalidImageName):
        NameValidator().validate("")


@pytest.mark.parametrize("name", [":latest", "web:", ":"])
def test_validate_rejects_empty_name_or_tag(name: str) -> None:
    with pytest.raises(InvalidImageName):
        NameValidator().validate(name)
