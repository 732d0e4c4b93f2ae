"""Unit tests for build context staging."""

from __future__ import annotations

from pathlib import Path

import pytest

from imagebuild.common.errors import StagingFailed
from imagebuild.runtime.staging import BuildContextStager


def write_dockerfile(tmp_path: Path, content: bytes = b"FROM busybox\nRUN echo hi\n") -> Path:
    source = tmp_path / "stored" / "df-1234"
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_bytes(content)
    return source


def test_stage_copies_dockerfile_byte_for_byte(tmp_path: Path) -> None:
    content = b"FROM busybox\r\nRUN printf '\\x00'\n"
    source = write_dockerfile(tmp_path, content)
    stager = BuildContextStager(tmp_path / "staging")

    with stager.stage(source, "Dockerfile.web") as context:
        assert context.path.parent == tmp_path / "staging"
        assert context.dockerfile_path == context.path / "Dockerfile.web"
        assert context.dockerfile_path.read_bytes() == content

    assert not context.path.exists()
    assert context.released


def test_stage_directories_are_unique(tmp_path: Path) -> None:
    source = write_dockerfile(tmp_path)
    stager = BuildContextStager(tmp_path / "staging")

    with stager.stage(source, "Dockerfile") as first, stager.stage(source, "Dockerfile") as second:
        assert first.path != second.path


def test_context_is_removed_when_block_raises(tmp_path: Path) -> None:
    source = write_dockerfile(tmp_path)
    stager = BuildContextStager(tmp_path / "staging")

    with pytest.raises(RuntimeError):
        with stager.stage(source, "Dockerfile") as context:
            raise RuntimeError("backend exploded")

    assert not context.path.exists()


def test_release_is_idempotent(tmp_path: Path) -> None:
    source = write_dockerfile(tmp_path)
    context = BuildContextStager(tmp_path / "staging").stage(source, "Dockerfile")

    context.release()
    context.release()

    assert not context.path.exists()


def test_missing_dockerfile_fails_and_leaves_no_directory(tmp_path: Path) -> None:
    staging_base = tmp_path / "staging"
    stager = BuildContextStager(staging_base)

    with pytest.raises(StagingFailed):
        stager.stage(tmp_path / "does-not-exist", "Dockerfile")

    assert list(staging_base.iterdir()) == []


@pytest.mark.parametrize("name", ["", "../Dockerfile", "sub/Dockerfile"])
def test_dockerfile_name_must_be_plain_file_name(tmp_path: Path, name: str) -> None:
    source = write_dockerfile(tmp_path)

    with pytest.raises(StagingFailed):
        BuildContextStager(tmp_path / "staging").stage(source, name)
