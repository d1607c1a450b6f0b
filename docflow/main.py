import argparse
import sys
from pathlib import Path

from docflow.config.settings import Settings
from docflow.logging.logger import Log
from docflow.orchestration.models import JobState
from docflow.worker.pipeline import build_pipeline


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docflow",
        description="Transform a text document chunk by chunk through a generative-text provider.",
    )
    parser.add_argument("input", type=Path, help="UTF-8 text file to transform")
    parser.add_argument("--provider", help="provider id (defaults to DEFAULT_PROVIDER)")
    parser.add_argument(
        "--instructions-file",
        type=Path,
        help="file whose contents are sent to the provider as instructions",
    )
    parser.add_argument("--output", type=Path, help="write the result here instead of stdout")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point: build pipeline -> submit document -> wait -> write result."""
    args = _parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)

    text = args.input.read_text(encoding="utf-8")
    instructions = ""
    if args.instructions_file is not None:
        instructions = args.instructions_file.read_text(encoding="utf-8")

    with build_pipeline(settings) as pipeline:
        job_id = pipeline.submit(text, args.provider or settings.default_provider, instructions)
        try:
            pipeline.wait(job_id)
        except KeyboardInterrupt:
            Log.info(f"Interrupted, cancelling job {job_id}")
            pipeline.cancel(job_id)
            pipeline.wait(job_id)
        result = pipeline.get_result(job_id)

    stats = result.statistics
    Log.info(
        f"Job {job_id} {result.state.value}: {stats.total_input_words} words in, "
        f"{stats.total_output_words} words out, {stats.retried_chunks} chunks retried, "
        f"{stats.fatal_failures} chunks failed"
    )
    if result.error_message:
        Log.error(result.error_message)

    if args.output is not None:
        args.output.write_text(result.final_text, encoding="utf-8")
    else:
        sys.stdout.write(result.final_text + "\n")
    return 0 if result.state is JobState.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
