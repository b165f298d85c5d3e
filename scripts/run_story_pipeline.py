"""
CLI example to generate one story end-to-end and save it to the library.

Usage:
    python scripts/run_story_pipeline.py \
        --request story_request.yaml \
        --output story_record.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storyloom import Settings, StoryOrchestrator, StoryRequest
from storyloom.common.errors import GenerationCancelled, GenerationFailed
from storyloom.pipeline import PipelineObserver


class ProgressTracker(PipelineObserver):
    """
    Command-line progress updates: one line per stage plus a page bar per per-page stage.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None
        self._bar_kind: str | None = None
        self._last_stage: str | None = None

    def on_stage_change(self, stage: str, progress: int, label: str) -> None:
        if stage != self._last_stage:
            self._last_stage = stage
            self.close()
            self._write(f"[{progress:3d}%] {label}")
        if stage in {"complete", "error"}:
            self.close()

    def on_page_progress(self, kind: str, current: int, total: int) -> None:
        if self._page_bar is None or self._bar_kind != kind:
            self.close()
            desc = "Illustrated pages" if kind == "illustration" else "Narrated pages"
            self._page_bar = tqdm(total=total, desc=desc, unit="page")
            self._bar_kind = kind
        self._page_bar.n = current - 1
        self._page_bar.set_description(f"{kind.capitalize()} page {current}/{total}")
        self._page_bar.refresh()

    def on_asset_fixed(self, original: str, fixed: str) -> None:
        self._write(f"Replaced asset {original[:60]} -> {fixed[:60]}")

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.n = self._page_bar.total
            self._page_bar.refresh()
            self._page_bar.close()
            self._page_bar = None
            self._bar_kind = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a personalised story and save it.")
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the story request YAML/JSON file (name, age, theme, pages...).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional settings YAML overlaid on STORYLOOM_* environment variables.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Optional YAML file for an offline copy of the saved record.",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=None,
        help="Override the requested page count (1-30).",
    )
    parser.add_argument(
        "--voice",
        choices=["male", "female"],
        default=None,
        help="Narrate the story with the given voice.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (DEBUG, INFO, WARNING...).",
    )
    return parser.parse_args()


def load_request_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported request file format. Use YAML or JSON.")

    if not isinstance(data, dict):
        raise ValueError("Request file must deserialize to a mapping.")
    return data


async def run(args: argparse.Namespace) -> int:
    settings = Settings.from_file(args.config) if args.config else Settings.from_env()

    mapping = load_request_mapping(Path(args.request))
    if args.pages is not None:
        mapping["page_count"] = args.pages
    if args.voice is not None:
        mapping["narration_voice"] = args.voice
    request = StoryRequest.from_mapping(mapping)

    tracker = ProgressTracker()
    orchestrator = StoryOrchestrator.from_settings(settings, observer=tracker)
    draft = orchestrator.create_draft(request)

    try:
        record = await orchestrator.run(draft)
    except GenerationFailed as exc:
        tqdm.write(f"Story generation failed at {exc.stage}: {exc}")
        return 1
    except GenerationCancelled:
        tqdm.write("Story generation cancelled.")
        return 130
    finally:
        tracker.close()

    for status in orchestrator.health.issues():
        tqdm.write(f"Provider issue: {status.provider} ({status.capability}) {status.status}")

    tqdm.write(f"Saved \"{record.title}\" as {record.id} (published={record.published}).")
    if args.output:
        output_path = Path(args.output)
        output_path.write_text(record.to_yaml(), encoding="utf-8")
        print(f"Saved story record to {output_path}")
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
