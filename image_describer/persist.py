"""
Default persistence step: loads a staged {"images": [...]} document into the
sqlite catalog.

    python -m image_describer.persist data/tmp/imageResponses-<id>.json
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .db import DB_PATH, init_db, insert_records

logger = logging.getLogger("image_describer.persist")


def load_document(path: Path) -> List[dict]:
    document = json.loads(path.read_text(encoding="utf-8"))
    images = document.get("images") if isinstance(document, dict) else None
    if not isinstance(images, list):
        raise ValueError(f"{path} has no 'images' list")
    return images


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load a staged image document into the catalog.")
    parser.add_argument("document", type=Path)
    parser.add_argument("--db", type=Path, default=DB_PATH)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    try:
        images = load_document(args.document)
    except (OSError, ValueError) as e:
        logger.error("Could not read %s: %s", args.document, e)
        return 1

    init_db(args.db)
    count = insert_records(images, args.db)
    print(f"Inserted {count} records from {args.document.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
