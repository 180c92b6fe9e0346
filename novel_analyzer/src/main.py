import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from .config import Config
from .connectors import LLMConnector, TextChunkSource
from .errors import AuthError, ChunkSourceError
from .models import AnalysisMode, Job, JobStatus
from .processing import AnalysisClient, AnalysisOrchestrator, ProgressStore, TimeEstimator
from .services import ServiceBootstrapper, TickCoordinator

EXIT_COMPLETED = 0
EXIT_ERROR = 1
EXIT_PAUSED = 3
EXIT_INTERRUPTED = 130

REPORT_TITLES: Dict[str, str] = {
    "opening_assessment": "Opening Assessment",
    "full_report": "Full Analysis Report",
}


def setup_logging():
    """Configure application logging."""
    with contextlib.suppress(OSError):
        Path(Config.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)

    _ = logger.add(
        Config.LOG_FILE,
        rotation="10 MB",
        retention="10 days",
        enqueue=True,
        backtrace=True,
        diagnose=True,
    )


def setup_signal_handlers(coordinator: TickCoordinator):
    """Setup signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum):
        logger.info(f"Received signal {signum}; pausing and saving progress...")
        coordinator.request_stop()

    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig is not None:
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, handle_signal, sig)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="novel-analyzer",
        description="Analyze a long text document chunk by chunk and write a Markdown report.",
    )
    parser.add_argument("file", type=Path, help="UTF-8 text file to analyze")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in AnalysisMode],
        default=AnalysisMode.OPENING.value,
        help="opening: first chunks only, sequential; full: whole document, concurrent",
    )
    parser.add_argument("--fresh", action="store_true", help="ignore and discard saved progress")
    parser.add_argument("--output", type=Path, help="Markdown report path (default: <file>.<mode>.md)")
    parser.add_argument("--api-key", help="API key for the model service")
    parser.add_argument("--no-bootstrap", action="store_true", help="skip waiting for the model service")
    return parser.parse_args(argv)


def render_report(job: Job) -> str:
    lines = [f"# {job.document_name}", "", f"Mode: {job.mode.value}", ""]
    for report_type, text in job.reports.items():
        lines.extend([f"## {REPORT_TITLES.get(report_type, report_type)}", "", text.strip(), ""])
    return "\n".join(lines)


def write_report(job: Job, output: Path) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(render_report(job), encoding="utf-8")
    logger.info(f"[final] report written to {output}")
    return output


def _log_progress(orchestrator: AnalysisOrchestrator, job: Optional[Job]) -> None:
    if job is None or job.status is not JobStatus.ANALYZING_CHUNKS:
        return
    eta = TimeEstimator.format_eta(orchestrator.estimated_time_remaining())
    logger.debug(
        f"[progress] cursor={job.cursor}/{job.total_chunks_to_process} "
        f"last_completed={job.last_completed_index} eta={eta or '-'}"
    )


async def run(args: argparse.Namespace) -> int:
    mode = AnalysisMode(args.mode)
    api_key = args.api_key or LLMConnector.resolve_api_key()
    client = AnalysisClient(
        LLMConnector.build_chat_model(api_key),
        model_factory=LLMConnector.build_chat_model,
    )
    orchestrator = AnalysisOrchestrator(client, ProgressStore(Config.PROGRESS_DIR))
    orchestrator.subscribe(lambda job: _log_progress(orchestrator, job))
    coordinator = TickCoordinator(orchestrator)
    setup_signal_handlers(coordinator)

    if args.api_key:
        await orchestrator.override_credentials(args.api_key)

    orchestrator.select_mode(mode)
    job = await orchestrator.submit_document(TextChunkSource.from_file(args.file), resume=not args.fresh)
    if job.status is JobStatus.PAUSED_AWAITING_RESUME:
        logger.info(f"Resuming saved progress at chunk {job.last_completed_index + 2}")
        orchestrator.resume()

    status = await coordinator.run()
    if status is JobStatus.COMPLETED:
        output = args.output or args.file.with_suffix(f".{mode.value}.md")
        write_report(job, output)
        return EXIT_COMPLETED
    if orchestrator.state_machine.is_paused(status):
        logger.warning(f"Job paused ({status.value}); rerun the same command to resume.")
        return EXIT_INTERRUPTED if coordinator.stop_event.is_set() else EXIT_PAUSED
    if status is JobStatus.CANCELLED:
        return EXIT_INTERRUPTED
    logger.error(f"Job ended with status {status.value}: {job.error}")
    return EXIT_ERROR


def main(argv=None):
    """Main entry point - analyzes one document then exits."""
    args = parse_args(argv)
    setup_logging()
    Config.initialize_directories()

    try:
        if not args.no_bootstrap:
            ServiceBootstrapper.bootstrap_model_service()
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        sys.exit(EXIT_INTERRUPTED)
    except (AuthError, ChunkSourceError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        sys.exit(EXIT_ERROR)
    finally:
        logger.info("Analyzer stopped.")
    sys.exit(code)


if __name__ == "__main__":
    main()
