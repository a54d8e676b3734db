#!/usr/bin/env python3
"""
Ledger Export

Dumps ledger tables to JSON files for backup and offline analysis:
one <collection>.json per table plus an all_collections.json bundle.
Timestamps are written as ISO-8601 strings and amounts as decimal strings.

Usage:
    python -m scripts.export_ledger --out exports
    python -m scripts.export_ledger --collections transactions return_requests
"""

import argparse
import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Config
from database import build_async_engine, build_session_factory, dispose_engine
from services.ledger_store import Collection
from services.sql_ledger_store import COLLECTION_MODELS

logger = logging.getLogger(__name__)

BUNDLE_FILE = "all_collections.json"


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


def serialize_row(row) -> Dict[str, Any]:
    return {column.name: _json_value(getattr(row, column.key)) for column in row.__table__.columns}


async def export_collection(
    session_factory: async_sessionmaker[AsyncSession], collection: Collection, out_dir: Path
) -> Dict[str, Any]:
    model = COLLECTION_MODELS[collection]
    async with session_factory() as session:
        result = await session.execute(select(model))
        documents = [serialize_row(row) for row in result.scalars().all()]

    file_path = out_dir / f"{collection.value}.json"
    file_path.write_text(json.dumps(documents, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"✅ Exported {len(documents)} documents from {collection.value} to {file_path}")
    return {"collection": collection.value, "count": len(documents), "file": str(file_path), "data": documents}


async def export_collections(
    session_factory: async_sessionmaker[AsyncSession],
    collections: Sequence[Collection],
    out_dir: Path,
) -> List[Dict[str, Any]]:
    """Export each collection, then write the combined bundle"""
    out_dir.mkdir(parents=True, exist_ok=True)

    results = []
    for collection in collections:
        results.append(await export_collection(session_factory, collection, out_dir))

    bundle = {result["collection"]: result.pop("data") for result in results}
    (out_dir / BUNDLE_FILE).write_text(json.dumps(bundle, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"📦 Wrote {BUNDLE_FILE} with {len(bundle)} collections")
    return results


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export ledger tables to JSON")
    parser.add_argument("--out", default="exports", help="Output directory")
    parser.add_argument(
        "--collections",
        nargs="+",
        choices=[c.value for c in Collection],
        help="Collections to export (default: all)",
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    return parser.parse_args(argv)


async def main(argv: Optional[Sequence[str]] = None):
    args = parse_args(argv)
    collections = [Collection(name) for name in args.collections] if args.collections else list(Collection)

    engine = build_async_engine(args.database_url or Config.DATABASE_URL)
    try:
        results = await export_collections(build_session_factory(engine), collections, Path(args.out))
    finally:
        await dispose_engine(engine)

    total = sum(result["count"] for result in results)
    print(f"📊 Exported {total} documents from {len(results)} collections to {args.out}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    asyncio.run(main())
