"""Per-task working directories.

Every attempt of every task gets its own directory holding the task body, a
wrapper that runs it, its captured output, and the exit code:

    <workdir>/<task>/attempt-<n>/
        .command.sh     the task's command
        .command.run    wrapper submitted to the scheduler
        .command.out    captured stdout
        .command.err    captured stderr
        .exitcode       written when the command finishes
"""

import glob
import os
import pathlib
import re
import shlex
import shutil

from baton.base_types import Task
from baton.config import ContainerConfig
from baton.constants import COMMAND_SCRIPT, COMMAND_STDERR, COMMAND_STDOUT, COMMAND_WRAPPER, EXITCODE_FILE
from baton.utils.logging_config import get_logger

log = get_logger(__name__)

UNSAFE_PATH_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_name(name: str) -> str:
    return UNSAFE_PATH_RE.sub("_", name).strip("._") or "task"


def task_workdir(root: str | pathlib.Path, task: Task, attempt: int) -> pathlib.Path:
    return pathlib.Path(root).resolve() / safe_name(task.name) / f"attempt-{attempt}"


def container_prefix(container: ContainerConfig, image: str | None) -> str:
    """The command prefix that runs the task body inside its container, or an
    empty string when the task runs on the host."""

    if image is None or container.runtime is None:
        return ""

    options = f"{container.options} " if container.options else ""
    if container.runtime == "docker":
        return f'docker run --rm -v "$PWD":"$PWD" -w "$PWD" {options}{shlex.quote(image)} '
    return f"{container.runtime} exec {options}{shlex.quote(image)} "


def render_wrapper(task: Task, attempt: int, workdir: pathlib.Path, container: ContainerConfig, outdir: str | None) -> str:
    prefix = container_prefix(container, task.hints.container)
    lines = [
        "#!/bin/bash",
        f"# baton task wrapper: {task.name}, attempt {attempt}",
        f"export BATON_TASK_NAME={shlex.quote(task.name)}",
        f"export BATON_ATTEMPT={attempt}",
        f"export BATON_WORKDIR={shlex.quote(str(workdir))}",
    ]
    if outdir is not None:
        lines.append(f"export BATON_OUTDIR={shlex.quote(str(pathlib.Path(outdir).resolve()))}")

    lines += [
        f"cd {shlex.quote(str(workdir))} || exit 1",
        f"rm -f {EXITCODE_FILE}",
        f"{prefix}/bin/bash {COMMAND_SCRIPT} > {COMMAND_STDOUT} 2> {COMMAND_STDERR}",
        "status=$?",
        # Written via rename, so a reader never sees a partial exit code
        f"echo $status > {EXITCODE_FILE}.tmp && mv {EXITCODE_FILE}.tmp {EXITCODE_FILE}",
        "exit $status",
    ]
    return "\n".join(lines) + "\n"


def prepare_workdir(
    root: str | pathlib.Path,
    task: Task,
    attempt: int,
    container: ContainerConfig,
    outdir: str | None = None,
) -> pathlib.Path:
    """Create the working directory for one attempt and write the task's
    command and wrapper into it.

    @return: The path of the working directory
    """

    workdir = task_workdir(root, task, attempt)
    workdir.mkdir(parents=True, exist_ok=True)

    script = workdir / COMMAND_SCRIPT
    script.write_text(task.command if task.command.endswith("\n") else task.command + "\n", encoding="utf-8")

    wrapper = workdir / COMMAND_WRAPPER
    wrapper.write_text(render_wrapper(task, attempt, workdir, container, outdir), encoding="utf-8")
    wrapper.chmod(0o755)

    log.debug(f"Prepared working directory {workdir} for {task.name}")
    return workdir


def read_exitcode(workdir: str | pathlib.Path | None) -> int | None:
    """The exit code the wrapper recorded, if the task has finished."""

    if workdir is None:
        return None

    try:
        text = (pathlib.Path(workdir) / EXITCODE_FILE).read_text(encoding="utf-8").strip()
    except OSError:
        return None

    return int(text) if text.lstrip("-").isdigit() else None


def publish_outputs(task: Task, workdir: str | pathlib.Path, outdir: str | pathlib.Path) -> list[pathlib.Path]:
    """Copy files matching the task's publish patterns into the results
    directory, under a folder named after the task.

    @return: The published paths
    """

    if not task.publish:
        return []

    target = pathlib.Path(outdir) / safe_name(task.name)
    published: list[pathlib.Path] = []

    for pattern in task.publish:
        for match in sorted(glob.glob(os.path.join(str(workdir), pattern), recursive=True)):
            source = pathlib.Path(match)
            if not source.is_file():
                continue
            destination = target / source.relative_to(workdir)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            published.append(destination)

    log.debug(f"Published {len(published)} files for {task.name} to {target}")
    return published
