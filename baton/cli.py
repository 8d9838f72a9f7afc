"""Command-line entry points.

    baton run pipeline.yaml --profile slurm,test --outdir results
    baton submit pipeline.yaml --profile slurm --outdir results
    baton status --outdir results
"""

import argparse
import os
import pathlib
import sys

from baton.config import RunConfig, load_config, parse_profiles
from baton.constants import COORDINATOR_SCRIPT, FATAL_EXIT_CODE, MANIFEST_FILE, STATE_DIR
from baton.coordinator import BatonProgressMonitor, Coordinator, NoOpProgressMonitor, render_summary, should_resume
from baton.coordinator.submit import submit_coordinator, write_coordinator_script
from baton.coordinator.summary import summarise
from baton.exception import ConfigError, GraphError, ManifestCorruptError, SubmissionError
from baton.graph import load_graph
from baton.manifest import SQLiteRunManifest
from baton.scheduler import scheduler_for
from baton.tracker import ExecutionTracker
from baton.utils.id_generator import generate_run_id
from baton.utils.logging_config import configure_logging, get_logger

log = get_logger(__name__)

FATAL_ERRORS = (ConfigError, GraphError, ManifestCorruptError)


def manifest_path(outdir: str | pathlib.Path) -> pathlib.Path:
    return pathlib.Path(outdir) / STATE_DIR / MANIFEST_FILE


def add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("graph", help="Task graph YAML file")
    parser.add_argument("--config", "-c", default=None, help="Run configuration (default: baton.yaml or $BATON_CONFIG)")
    parser.add_argument("--profile", "-p", default=None, help="Comma-separated profiles, e.g. singularity,test,slurm")
    parser.add_argument("--outdir", default="results", help="Where outputs are published and run state is kept")
    parser.add_argument("--workdir", "-w", default="work", help="Where each task attempt gets a working directory")
    parser.add_argument("--resume", action="store_true", help="Continue the run recorded in --outdir")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="baton",
        description="Run a task graph as one scheduler job per task, from a single coordinator.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $BATON_LOG_LEVEL or WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the coordinator in this process")
    add_run_arguments(run)

    submit = subparsers.add_parser("submit", help="Submit the coordinator as a Slurm job")
    add_run_arguments(submit)
    submit.add_argument("--dry-run", action="store_true", help="Write the coordinator script without submitting it")

    status = subparsers.add_parser("status", help="Show the state of a run")
    status.add_argument("graph", nargs="?", default=None, help="Task graph YAML file, for graph order")
    status.add_argument("--outdir", default="results", help="The run's output directory")

    return parser


def load_inputs(args: argparse.Namespace) -> RunConfig:
    return load_config(args.config, parse_profiles(args.profile))


def run_command(args: argparse.Namespace) -> int:
    config = load_inputs(args)
    graph = load_graph(args.graph)

    manifest = SQLiteRunManifest(manifest_path(args.outdir))
    manifest.init()
    try:
        resume = should_resume(manifest, args.resume)
        metadata = manifest.metadata()
        run_id = metadata.run_id if resume and metadata is not None else generate_run_id()

        log.info(f"Starting run {run_id} of '{graph.name}' ({len(graph)} tasks, profiles: {config.profiles})")

        tracker = ExecutionTracker(
            graph,
            scheduler_for(config, args.workdir, outdir=args.outdir),
            manifest,
            config.policy,
            run_id,
            status_grace_seconds=config.executor.status_grace_seconds,
            queue_size=config.executor.queue_size,
            poll_workers=config.executor.poll_workers,
            outdir=args.outdir,
        )
        monitor = NoOpProgressMonitor() if args.no_progress else BatonProgressMonitor(graph)
        summary = Coordinator(tracker, config.executor.poll_interval_seconds, monitor).run(resume=resume)
    finally:
        manifest.close()

    render_summary(summary)
    return summary.exit_code


def coordinator_command(args: argparse.Namespace) -> list[str]:
    """The `baton run` invocation the coordinator job executes."""

    command = ["baton", "run", os.path.abspath(args.graph)]
    if args.config:
        command.extend(["--config", os.path.abspath(args.config)])
    if args.profile:
        command.extend(["--profile", args.profile])
    command.extend(["--outdir", os.path.abspath(args.outdir)])
    command.extend(["--workdir", os.path.abspath(args.workdir)])
    if args.resume:
        command.append("--resume")
    # Batch logs are not terminals
    command.append("--no-progress")
    return command


def submit_command(args: argparse.Namespace) -> int:
    config = load_inputs(args)
    # Fail before submitting anything if the graph is invalid
    load_graph(args.graph)

    script = write_coordinator_script(
        pathlib.Path(args.outdir) / STATE_DIR / COORDINATOR_SCRIPT, config.coordinator, coordinator_command(args)
    )

    if args.dry_run:
        print(script)
        return 0

    try:
        job_id = submit_coordinator(script, config.coordinator, config.executor.submit_timeout_seconds)
    except SubmissionError as err:
        log.error(str(err))
        return FATAL_EXIT_CODE

    print(job_id)
    return 0


def status_command(args: argparse.Namespace) -> int:
    path = manifest_path(args.outdir)
    if not path.exists():
        log.error(f"No run manifest at {path}")
        return FATAL_EXIT_CODE

    graph = load_graph(args.graph) if args.graph else None

    manifest = SQLiteRunManifest(path)
    manifest.init()
    try:
        metadata = manifest.metadata()
        if metadata is None:
            log.error(f"Run manifest {path} holds no run")
            return FATAL_EXIT_CODE
        summary = summarise(metadata.run_id, manifest.load(), graph)
    finally:
        manifest.close()

    render_summary(summary)
    print(f"Run {'finished' if metadata.finished else 'in progress, or interrupted'}")
    return summary.exit_code


COMMANDS = {
    "run": run_command,
    "submit": submit_command,
    "status": status_command,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        return COMMANDS[args.command](args)
    except FATAL_ERRORS as err:
        log.error(f"{type(err).__name__}: {err}")
        print(f"baton: {err}", file=sys.stderr)
        return FATAL_EXIT_CODE


if __name__ == "__main__":
    sys.exit(main())
