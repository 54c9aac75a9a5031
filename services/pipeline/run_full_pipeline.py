"""
Run the complete comment analysis pipeline for one document.

Steps:
    1. load comments (regulations.gov API or CSV export)
    2. condense comments
    3. discover themes
    4. score themes
    5. extract theme content + summarize themes
    6. discover entities
    7. build website data

A crash restarts the pipeline from the step that failed, up to --max-crashes
times. Every step is resumable, so a restart only redoes unfinished work.

Usage:
    python services/pipeline/run_full_pipeline.py CMS-2025-0050-0031
    python services/pipeline/run_full_pipeline.py comments.csv --start-at 3 --concurrency 4
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_pipeline_config
from services.pipeline.condense import condense_comments
from services.pipeline.entities import discover_entities
from services.pipeline.ingestion import load_comments
from services.pipeline.themes import discover_themes, extract_theme_content, score_themes, summarize_themes
from services.publication import build_website

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STEP_NAMES = {
    1: "Loading comments",
    2: "Condensing comments",
    3: "Discovering themes",
    4: "Scoring themes",
    5: "Extracting and summarizing themes",
    6: "Discovering entities",
    7: "Building website files",
}


class PipelineError(RuntimeError):
    pass


def document_id_for(source: str) -> str:
    """Document id for an API id or a CSV path (the file stem)."""
    return Path(source).stem if load_comments.is_file_source(source) else source


def build_steps(source: str, document_id: str, limit: Optional[int] = None,
                concurrency: Optional[int] = None, skip_attachments: bool = False,
                output: Optional[str] = None, db_dir: Optional[str] = None,
                debug: bool = False) -> List[Tuple[int, str, Callable[[], Dict]]]:
    def summarize():
        extract_stats = extract_theme_content.run(document_id, concurrency=concurrency, db_dir=db_dir, debug=debug)
        summary_stats = summarize_themes.run(document_id, concurrency=concurrency, db_dir=db_dir, debug=debug)
        return {'extract': extract_stats, 'summarize': summary_stats}

    steps = {
        1: lambda: load_comments.run(source, limit=limit, skip_attachments=skip_attachments, db_dir=db_dir),
        2: lambda: condense_comments.run(document_id, concurrency=concurrency, db_dir=db_dir, debug=debug),
        3: lambda: discover_themes.run(document_id, concurrency=concurrency, db_dir=db_dir, debug=debug),
        4: lambda: score_themes.run(document_id, concurrency=concurrency, db_dir=db_dir, debug=debug),
        5: summarize,
        6: lambda: discover_entities.run(document_id, db_dir=db_dir, debug=debug),
        7: lambda: build_website.run(document_id, output=output, db_dir=db_dir),
    }
    return [(num, STEP_NAMES[num], steps[num]) for num in sorted(steps)]


def run_pipeline(steps: List[Tuple[int, str, Callable[[], Dict]]], start_at: int = 1,
                 max_crashes: int = 10, retry_delay: float = 5, sleep: Callable[[float], None] = time.sleep) -> Dict:
    """
    Run steps in order from start_at, restarting at the failed step after a crash.

    Returns:
        dict with per-step results, crash count and completed flag

    Raises:
        PipelineError: when max_crashes is reached
    """
    if not 1 <= start_at <= len(steps):
        raise ValueError(f"start_at must be between 1 and {len(steps)}")

    results = {}
    crashes = 0
    current = start_at

    while current <= len(steps):
        num, name, execute = steps[current - 1]
        logger.info(f"Step {num}/{len(steps)}: {name}")
        try:
            results[num] = execute()
        except Exception as e:
            crashes += 1
            logger.error(f"Step {num} ({name}) crashed ({crashes}/{max_crashes}): {e}")
            if crashes >= max_crashes:
                raise PipelineError(f"Pipeline failed after {crashes} crashes at step {num} ({name})") from e
            logger.info(f"Restarting from step {num} in {retry_delay}s")
            sleep(retry_delay)
            continue
        current += 1

    return {'results': results, 'crashes': crashes, 'completed': True}


def build_parser():
    steps_help = ", ".join(f"{num}={name.lower()}" for num, name in STEP_NAMES.items())
    parser = argparse.ArgumentParser(description="Run the complete comment analysis pipeline")
    parser.add_argument("source", help="regulations.gov document id or path to a CSV export")
    parser.add_argument("-s", "--skip-attachments", action="store_true", help="Skip downloading attachments")
    parser.add_argument("-l", "--limit", type=int, help="Limit the number of comments loaded")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel LLM calls per step")
    parser.add_argument("-o", "--output", help="Output directory for website files (default: dist/data)")
    parser.add_argument("--start-at", type=int, default=1, help=f"Start at step 1-7 ({steps_help})")
    parser.add_argument("--max-crashes", type=int, help="Crashes before giving up (default: 10)")
    parser.add_argument("--retry-delay", type=float, help="Seconds to wait before restarting (default: 5)")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    parser.add_argument("-d", "--debug", action="store_true", help="Save prompts and responses")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not 1 <= args.start_at <= len(STEP_NAMES):
        parser.error(f"--start-at must be between 1 and {len(STEP_NAMES)}")

    pipeline_cfg = get_pipeline_config()
    max_crashes = args.max_crashes or pipeline_cfg['max_crashes']
    retry_delay = args.retry_delay if args.retry_delay is not None else pipeline_cfg['retry_delay']
    document_id = document_id_for(args.source)

    steps = build_steps(args.source, document_id, limit=args.limit, concurrency=args.concurrency,
                        skip_attachments=args.skip_attachments, output=args.output,
                        db_dir=args.db_dir, debug=args.debug)

    print("\n" + "=" * 60)
    print(f"PIPELINE: {document_id} (starting at step {args.start_at})")
    print("=" * 60)
    try:
        outcome = run_pipeline(steps, start_at=args.start_at, max_crashes=max_crashes, retry_delay=retry_delay)
    except PipelineError as e:
        logger.error(str(e))
        sys.exit(1)

    print("\n" + "=" * 60)
    print("PIPELINE COMPLETE")
    print("=" * 60)
    print(f"Document: {document_id}")
    print(f"Crashes:  {outcome['crashes']}")
    print("=" * 60)
    return outcome


if __name__ == "__main__":
    main()
