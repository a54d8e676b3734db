"""Tests for the ledger JSON export script"""

import json

import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import FIXED_NOW, make_user, make_delivered_transaction
from scripts.export_ledger import export_collections, parse_args, BUNDLE_FILE
from services.ledger_store import Collection


class TestExportLedger:

    @pytest.mark.asyncio
    async def test_writes_one_file_per_collection_and_bundle(self, session_factory, seed, tmp_path):
        await seed(
            make_user("seller-1", saldo=Decimal("1250.50")),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(hours=1)),
        )

        results = await export_collections(
            session_factory, [Collection.USERS, Collection.TRANSACTIONS], tmp_path
        )

        assert [(r["collection"], r["count"]) for r in results] == [("users", 1), ("transactions", 1)]

        users = json.loads((tmp_path / "users.json").read_text(encoding="utf-8"))
        assert users[0]["id"] == "seller-1"
        assert users[0]["saldo"] == "1250.50"

        bundle = json.loads((tmp_path / BUNDLE_FILE).read_text(encoding="utf-8"))
        assert set(bundle) == {"users", "transactions"}
        assert bundle["transactions"][0]["delivered_at"] == (FIXED_NOW - timedelta(hours=1)).isoformat()

    @pytest.mark.asyncio
    async def test_empty_collection(self, session_factory, tmp_path):
        results = await export_collections(session_factory, [Collection.STORIES], tmp_path)

        assert results[0]["count"] == 0
        assert json.loads((tmp_path / "stories.json").read_text(encoding="utf-8")) == []

    def test_parse_args(self):
        args = parse_args(["--out", "backup", "--collections", "users", "invoices"])

        assert args.out == "backup"
        assert args.collections == ["users", "invoices"]
        assert args.database_url is None
