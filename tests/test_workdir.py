"""Tests for per-attempt working directories."""

import pathlib
import tempfile

from baton.base_types import ResourceHints, Task
from baton.config import ContainerConfig
from baton.scheduler.workdir import container_prefix, prepare_workdir, publish_outputs, read_exitcode, safe_name


def test_safe_name():
    assert safe_name("align sample/1") == "align_sample_1"
    assert safe_name("...") == "task"


def test_prepare_workdir_layout():
    task = Task(name="fastqc", command="fastqc reads.fq.gz")

    with tempfile.TemporaryDirectory() as tmp_dir:
        workdir = prepare_workdir(tmp_dir, task, 2, ContainerConfig(), outdir="results")

        assert workdir.name == "attempt-2"
        assert workdir.parent.name == "fastqc"
        assert (workdir / ".command.sh").read_text() == "fastqc reads.fq.gz\n"

        wrapper = (workdir / ".command.run").read_text()
        assert wrapper.startswith("#!/bin/bash")
        assert "export BATON_ATTEMPT=2" in wrapper
        assert "BATON_OUTDIR=" in wrapper
        assert "/bin/bash .command.sh > .command.out 2> .command.err" in wrapper
        assert "mv .exitcode.tmp .exitcode" in wrapper


def test_container_prefix():
    image = "quay.io/biocontainers/fastqc:0.12.1"

    assert container_prefix(ContainerConfig(), image) == ""
    assert container_prefix(ContainerConfig(runtime="singularity"), None) == ""
    assert container_prefix(ContainerConfig(runtime="singularity"), image) == f"singularity exec {image} "
    assert (
        container_prefix(ContainerConfig(runtime="apptainer", options="--cleanenv"), image)
        == f"apptainer exec --cleanenv {image} "
    )
    assert container_prefix(ContainerConfig(runtime="docker"), image).startswith("docker run --rm")


def test_wrapper_runs_inside_container():
    task = Task(name="fastqc", command="fastqc", hints=ResourceHints(container="fastqc.sif"))

    with tempfile.TemporaryDirectory() as tmp_dir:
        workdir = prepare_workdir(tmp_dir, task, 1, ContainerConfig(runtime="singularity"))
        wrapper = (workdir / ".command.run").read_text()

    assert "singularity exec fastqc.sif /bin/bash .command.sh" in wrapper


def test_read_exitcode():
    with tempfile.TemporaryDirectory() as tmp_dir:
        assert read_exitcode(tmp_dir) is None

        (pathlib.Path(tmp_dir) / ".exitcode").write_text("3\n")
        assert read_exitcode(tmp_dir) == 3

        (pathlib.Path(tmp_dir) / ".exitcode").write_text("")
        assert read_exitcode(tmp_dir) is None

    assert read_exitcode(None) is None


def test_publish_outputs():
    task = Task(name="multiqc", command="multiqc .", publish=("*.html", "data/*.txt"))

    with tempfile.TemporaryDirectory() as workdir, tempfile.TemporaryDirectory() as outdir:
        root = pathlib.Path(workdir)
        (root / "report.html").write_text("<html/>")
        (root / "ignored.log").write_text("log")
        (root / "data").mkdir()
        (root / "data" / "stats.txt").write_text("1")

        published = publish_outputs(task, workdir, outdir)

        target = pathlib.Path(outdir) / "multiqc"
        assert sorted(published) == sorted([target / "report.html", target / "data" / "stats.txt"])
        assert not (target / "ignored.log").exists()
