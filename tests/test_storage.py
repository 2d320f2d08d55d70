import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from photoframe.errors import StorageFailure
from photoframe.storage import JsonRecordStore, isoformat_utc, parse_timestamp


class JsonRecordStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "data" / "records.json"
        self.store = JsonRecordStore(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_is_seeded_empty(self):
        self.assertEqual(self.store.load(), [])
        self.assertTrue(self.path.exists())
        self.assertEqual(json.loads(self.path.read_text(encoding="utf-8")), [])

    def test_save_then_load(self):
        self.store.save([{"id": "a"}, {"id": "b"}])
        self.assertEqual([entry["id"] for entry in self.store.load()], ["a", "b"])
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())

    def test_corrupt_file_reads_as_empty(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("photoframe.storage", level="WARNING"):
            self.assertEqual(self.store.load(), [])

    def test_non_list_and_non_dict_entries_are_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"id": "x"}), encoding="utf-8")
        self.assertEqual(self.store.load(), [])
        self.path.write_text(json.dumps([{"id": "x"}, 3, "y"]), encoding="utf-8")
        self.assertEqual(self.store.load(), [{"id": "x"}])

    def test_transaction_persists_changes(self):
        with self.store.transaction() as records:
            records.append({"id": "new"})
        self.assertEqual(self.store.load(), [{"id": "new"}])

    def test_transaction_discards_changes_on_error(self):
        self.store.save([{"id": "keep"}])
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as records:
                records.clear()
                raise RuntimeError("abort")
        self.assertEqual(self.store.load(), [{"id": "keep"}])

    def test_write_failure_raises_storage_failure(self):
        self.store.ensure()
        with mock.patch("photoframe.storage.os.fsync", side_effect=OSError("disk full")):
            with self.assertRaises(StorageFailure):
                self.store.save([{"id": "x"}])
        self.assertEqual(self.store.load(), [])
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())


class TimestampTests(unittest.TestCase):
    def test_isoformat_uses_z_suffix(self):
        self.assertEqual(isoformat_utc(0), "1970-01-01T00:00:00Z")

    def test_parse_iso_and_epoch_millis(self):
        self.assertEqual(parse_timestamp("1970-01-01T00:01:00Z"), 60.0)
        self.assertEqual(parse_timestamp(60000), 60.0)
        self.assertEqual(parse_timestamp("60000"), 60.0)

    def test_parse_rejects_garbage(self):
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp("not a date"))
        self.assertIsNone(parse_timestamp(True))


if __name__ == "__main__":
    unittest.main()
