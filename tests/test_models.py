"""Unit tests for build report models and image references."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from imagebuild.common.models import BuildOutput, BuildStep, ImageReference


def test_wire_format_uses_legacy_field_names() -> None:
    output = BuildOutput()
    step = output.add_step(0, "FROM ubuntu:14.04")
    step.set_produced_image_id("ca4d7b1b9a51")
    output.add_step(1, "RUN echo hi").mark_used_cache()
    output.final_image_id = "3b6e27505fc5"

    assert output.to_wire() == {
        "ErrorMessage": "",
        "FinalDockerImageId": "3b6e27505fc5",
        "Steps": [
            {"StepNumber": 0, "Command": "FROM ubuntu:14.04", "UsedCache": False, "ProducedDockerImageId": "ca4d7b1b9a51"},
            {"StepNumber": 1, "Command": "RUN echo hi", "UsedCache": True, "ProducedDockerImageId": ""},
        ],
    }
    assert json.loads(output.as_json()) == output.to_wire()
    assert output.completed


def test_from_wire_accepts_legacy_payload() -> None:
    payload = {
        "ErrorMessage": ": no such image",
        "FinalDockerImageId": "",
        "Steps": [{"StepNumber": 3, "Command": "FROM nope"}],
    }

    output = BuildOutput.from_wire(payload)

    assert output.error_message == ": no such image"
    assert output.steps == [BuildStep(step_number=3, command="FROM nope")]
    assert not output.completed


def test_step_number_cannot_be_negative() -> None:
    with pytest.raises(ValidationError):
        BuildStep(step_number=-1, command="FROM x")


def test_untagged_reference_is_a_tag_of_the_repository() -> None:
    image = ImageReference.from_user_input("realm1", "repo1", "web")

    assert image.tag is None
    assert image.repository_path == "realm1/repo1"
    assert image.image_name == "web"
    assert image.full_name == "realm1/repo1:web"


def test_tagged_reference_gets_its_own_repository() -> None:
    image = ImageReference.from_user_input("realm1", "repo1", "centos:7")

    assert (image.name, image.tag) == ("centos", "7")
    assert image.image_name == "centos:7"
    assert image.full_name == "realm1/repo1/centos:7"
