#!/usr/bin/env python3
"""
Identify a cigar from a local band photo.

Runs the full identification pipeline (vision → assistant → catalogs) and
prints the normalized record as JSON.

Usage:
    python -m scripts.identify_image path/to/band.jpg
    python -m scripts.identify_image band.jpg --interests pairings,history
    python -m scripts.identify_image band.jpg --name "Padron 1964"
    USE_MOCKS=true python -m scripts.identify_image band.jpg
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from humidor.config import Config
from humidor.routes.dependencies import get_orchestrator
from humidor.services.errors import ExtractionError


async def identify(path: Path, interests: list[str], name: str, user_id: str) -> dict:
    orchestrator = get_orchestrator()
    image = path.read_bytes()
    if name:
        record = await orchestrator.reidentify(image, user_id, interests, corrected_name=name)
    else:
        record = await orchestrator.identify(image, user_id, interests)
    await orchestrator.drain()
    return record.to_document()


def main() -> int:
    parser = argparse.ArgumentParser(description="Identify a cigar from a band photo")
    parser.add_argument("image", type=Path, help="Path to a JPEG/PNG band photo")
    parser.add_argument("--interests", default="", help="Comma-separated smoker interests")
    parser.add_argument("--name", default="", help="Corrected name to steer the assistant")
    parser.add_argument("--user", default="cli", help="User id sent as run metadata")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, Config.log_level(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.image.exists():
        print(f"Error: {args.image} not found")
        return 1

    interests = [i.strip() for i in args.interests.split(",") if i.strip()]
    try:
        record = asyncio.run(identify(args.image, interests, args.name, args.user))
    except ExtractionError as e:
        print(f"Error: could not describe the band: {e}")
        return 2

    print(json.dumps(record, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
