import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import settings
from src.services.reviews_service import build_retry_controller


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scrape Google Maps reviews for one or more place ids, one after another."
    )
    parser.add_argument("place_ids", nargs="+", help="Place ids (ChIJ... or 0x...:0x...).")
    parser.add_argument(
        "--max-reviews",
        type=int,
        default=settings.scraper_max_reviews,
        help=f"Maximum number of reviews per place (default: {settings.scraper_max_reviews}).",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window (default: headless from settings).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write screenshots and raw JSON results under the output directory.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print every scrape stage as it happens.",
    )
    parser.add_argument(
        "--output",
        default="",
        help="Optional output JSON file path for all results.",
    )
    return parser.parse_args()


def _print_stage(event: dict) -> None:
    print(f"  [{event['stage']}] {event['message']}")


async def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    overrides: dict = {"scraper_max_reviews": max(1, args.max_reviews)}
    if args.headed:
        overrides["scraper_headless"] = False
    if args.debug:
        overrides["scraper_debug"] = True
    config = settings.model_copy(update=overrides)

    controller = build_retry_controller(config, progress_callback=_print_stage if args.verbose else None)
    results = await controller.scrape_many(args.place_ids)

    for result in results:
        if result.success:
            print(f"{result.place_id}: {result.place_name} -> {result.review_count} reviews")
        else:
            print(
                f"{result.place_id}: FAILED {result.error_kind.value if result.error_kind else ''} "
                f"after {result.retry_count} retries: {result.error}"
            )

    payload = [result.model_dump(mode="json") for result in results]
    if args.output:
        output_path = Path(args.output).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Saved results to {output_path}")
    else:
        print(json.dumps(payload, ensure_ascii=False, indent=2))

    if not all(result.success for result in results):
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
