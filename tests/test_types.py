"""Tests for the data models in chainharness.types."""

from __future__ import annotations

import pytest

from chainharness.dockerutil import NonZeroExitError
from chainharness.types import Bind, ContainerSpec, ImageRef, JobResult


class TestImageRef:
    @pytest.mark.parametrize(
        "raw, repository, version",
        [
            ("busybox", "busybox", "latest"),
            ("busybox:stable", "busybox", "stable"),
            ("ghcr.io/strangelove-ventures/heighliner/gaia:v15.0.0",
             "ghcr.io/strangelove-ventures/heighliner/gaia", "v15.0.0"),
            ("localhost:5000/busybox", "localhost:5000/busybox", "latest"),
            ("localhost:5000/busybox:1.36", "localhost:5000/busybox", "1.36"),
            ("busybox@sha256:abc123", "busybox", "sha256:abc123"),
        ],
    )
    def test_parse(self, raw, repository, version):
        ref = ImageRef.parse(raw)
        assert (ref.repository, ref.version) == (repository, version)

    def test_str(self):
        assert str(ImageRef("busybox", "stable")) == "busybox:stable"
        assert str(ImageRef("busybox", "sha256:abc123")) == "busybox@sha256:abc123"

    def test_hashable(self):
        assert {ImageRef("a", "1"), ImageRef("a", "1")} == {ImageRef("a", "1")}


class TestBind:
    def test_parse_and_render(self):
        assert Bind.parse("vol:/data") == Bind("vol", "/data")
        assert Bind.parse("/host:/data:ro") == Bind("/host", "/data", "ro")
        assert str(Bind("vol", "/data")) == "vol:/data"
        assert str(Bind("/host", "/data", "ro")) == "/host:/data:ro"


class TestContainerSpec:
    def test_mappings_are_read_only(self):
        spec = ContainerSpec(image=ImageRef("busybox"), name="x", env={"A": "1"})
        with pytest.raises(TypeError):
            spec.env["A"] = "2"  # type: ignore[index]

    def test_fields_are_frozen(self):
        spec = ContainerSpec(image=ImageRef("busybox"), name="x")
        with pytest.raises(AttributeError):
            spec.name = "y"  # type: ignore[misc]


class TestJobResult:
    def test_ok(self):
        assert JobResult("id", 0).ok
        assert not JobResult("id", 1).ok

    def test_raise_for_status(self):
        JobResult("id", 3).raise_for_status()

        err = NonZeroExitError("exited 3", exit_code=3)
        with pytest.raises(NonZeroExitError):
            JobResult("id", 3, container_error=err).raise_for_status()
