"""Deep Extract - company intelligence extraction

Simple CLI for running one deep extraction job from a JSON job file.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

load_dotenv()

from deep_extract.agents.orchestrator import DeepResearchOrchestrator  # noqa: E402
from deep_extract.models.events import ProgressEvent  # noqa: E402
from deep_extract.models.job import DeepResearchJob  # noqa: E402
from deep_extract.research_core.crawl.static_fetch import StaticPageExtractor  # noqa: E402
from deep_extract.services.repositories import InMemoryArtifactRepository  # noqa: E402
from deep_extract.services.secrets import MappingSecretStore  # noqa: E402


def print_progress(event: ProgressEvent) -> None:
    line = f"[{int(event.ratio * 100):>3}%] {event.phase.value}: {event.message}"
    if event.elapsed_ms is not None:
        line += f" ({event.elapsed_ms}ms)"
    print(line, flush=True)


async def run_job(job: DeepResearchJob, secrets_path: str | None, out_path: str | None) -> int:
    """Run the job and write (or print) the result document."""
    secrets = MappingSecretStore.from_json_file(secrets_path) if secrets_path else MappingSecretStore()
    orchestrator = DeepResearchOrchestrator(
        base_extractor=StaticPageExtractor(),
        secrets=secrets,
        artifacts_repo=InMemoryArtifactRepository(),
    )

    result = await orchestrator.run(job, progress=print_progress)
    payload = result.to_payload()

    print(f"\n{'=' * 50}")
    print(f"Coverage: completed={payload['coverage']['completedSteps']}")
    print(f"          skipped={payload['coverage']['skippedSteps']}")
    for gap in payload["coverage"]["gaps"]:
        print(f"  gap: {gap}")
    print(f"Cost: ${payload['cost']['totalUsd']} of ${payload['cost']['budgetUsd']}")
    print(f"Confidence: {payload['confidence']['overall']}")
    print(f"Warnings: {len(payload['warnings'])}")
    print(f"{'=' * 50}\n")

    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if out_path:
        Path(out_path).write_text(text, encoding="utf-8")
        print(f"Result written to {out_path}")
    else:
        print(text)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Deep Extract - company intelligence extraction")
    parser.add_argument("--job", "-j", required=True, help="Path to a JSON job file")
    parser.add_argument("--secrets", "-s", help="Path to a JSON secrets file (ref -> value)")
    parser.add_argument("--out", "-o", help="Write the result JSON here instead of stdout")

    args = parser.parse_args()

    try:
        job = DeepResearchJob.model_validate(json.loads(Path(args.job).read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"[!] Invalid job file {args.job}: {exc}", file=sys.stderr)
        sys.exit(2)

    sys.exit(asyncio.run(run_job(job, args.secrets, args.out)))


if __name__ == "__main__":
    main()
