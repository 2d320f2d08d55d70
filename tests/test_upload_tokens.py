import json
import tempfile
import threading
import unittest
from pathlib import Path

from photoframe.errors import NotFound, ValidationError
from photoframe.security import RedisplayCipher, is_hashed
from photoframe.storage import JsonRecordStore, isoformat_utc
from photoframe.upload_tokens import UploadTokenManager, remaining_uploads

CHEAP_HASH = "pbkdf2:sha256:1000"
DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UploadTokenManagerTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "upload-tokens.json"
        self.clock = FakeClock()
        self.store = JsonRecordStore(self.path)
        self.manager = UploadTokenManager(
            self.store, RedisplayCipher("token-secret"), CHEAP_HASH, clock=self.clock
        )

    def tearDown(self):
        self.tmp.cleanup()

    def _raw_tokens(self):
        return json.loads(self.path.read_text(encoding="utf-8"))

    def test_create_returns_secret_once_and_stores_only_hash(self):
        summary, plain = self.manager.create_token({"name": "Party"}, created_by="admin")
        self.assertGreaterEqual(len(plain), 40)
        self.assertEqual(summary["name"], "Party")
        self.assertEqual(summary["createdBy"], "admin")
        self.assertEqual(summary["uploadCount"], 0)
        self.assertTrue(summary["enabled"])
        self.assertEqual(summary["status"], "active")
        for private in ("tokenHash", "encryptedToken", "secretFingerprint"):
            self.assertNotIn(private, summary)

        stored = self._raw_tokens()[0]
        self.assertTrue(is_hashed(stored["tokenHash"]))
        self.assertNotIn(plain, json.dumps(stored))

    def test_defaults(self):
        summary, _ = self.manager.create_token()
        self.assertEqual(summary["name"], "Unnamed Token")
        self.assertEqual(summary["expiresAt"], isoformat_utc(self.clock() + 30 * DAY))
        self.assertIsNone(summary["uploadLimit"])
        self.assertEqual(summary["targetFolder"], "")

    def test_explicit_null_expiry_never_expires(self):
        summary, plain = self.manager.create_token({"expiresAt": None})
        self.assertIsNone(summary["expiresAt"])
        for _ in range(50):
            self.clock.advance(365 * DAY)
            self.assertTrue(self.manager.validate(plain))
        self.manager.update_token(summary["id"], {"enabled": False})
        self.assertEqual(self.manager.validate(plain).code, "TOKEN_DISABLED")

    def test_epoch_millis_expiry_is_accepted(self):
        expires_ms = int((self.clock() + DAY) * 1000)
        summary, _ = self.manager.create_token({"expiresAt": expires_ms})
        self.assertEqual(summary["expiresAt"], isoformat_utc(expires_ms / 1000))

    def test_invalid_upload_limit_rejected(self):
        for bad in (-1, "many", 1.5, True):
            with self.assertRaises(ValidationError):
                self.manager.create_token({"uploadLimit": bad})
        self.assertEqual(self.manager.list_tokens(), [])

    def test_validate_reasons(self):
        self.assertEqual(self.manager.validate(None).code, "TOKEN_REQUIRED")
        self.assertEqual(self.manager.validate("").code, "TOKEN_REQUIRED")
        self.manager.create_token()
        outcome = self.manager.validate("not-a-real-token")
        self.assertEqual(outcome.code, "INVALID_TOKEN")
        self.assertEqual(outcome.status, 403)

    def test_disabled_token_rejected(self):
        summary, plain = self.manager.create_token()
        self.manager.update_token(summary["id"], {"enabled": False})
        outcome = self.manager.validate(plain)
        self.assertEqual(outcome.code, "TOKEN_DISABLED")
        self.assertEqual(outcome.message, "This upload link has been disabled")

    def test_expired_token_rejected(self):
        _, plain = self.manager.create_token({"expiresAt": isoformat_utc(self.clock() + 60)})
        self.assertTrue(self.manager.validate(plain))
        self.clock.advance(61)
        outcome = self.manager.validate(plain)
        self.assertEqual(outcome.code, "TOKEN_EXPIRED")
        self.assertEqual(outcome.message, "This upload link has expired")

    def test_upload_limit_reached(self):
        summary, plain = self.manager.create_token({"uploadLimit": 1})
        outcome = self.manager.validate(plain)
        self.assertTrue(outcome)
        self.assertEqual(remaining_uploads(outcome.payload), 1)

        self.assertTrue(self.manager.increment_upload_count(summary["id"]))
        outcome = self.manager.validate(plain)
        self.assertEqual(outcome.code, "TOKEN_LIMIT_REACHED")
        self.assertEqual(outcome.message, "Upload limit reached for this link")

    def test_disabled_is_reported_before_expired(self):
        summary, plain = self.manager.create_token({"expiresAt": isoformat_utc(self.clock() + 60)})
        self.manager.update_token(summary["id"], {"enabled": False})
        self.clock.advance(120)
        self.assertEqual(self.manager.validate(plain).code, "TOKEN_DISABLED")

    def test_get_token_redisplays_plain_secret(self):
        summary, plain = self.manager.create_token()
        self.assertEqual(self.manager.get_token(summary["id"])["plainToken"], plain)

    def test_rotated_secret_skips_redisplay(self):
        summary, plain = self.manager.create_token()
        rotated = UploadTokenManager(self.store, RedisplayCipher("new-secret"), CHEAP_HASH, clock=self.clock)
        token = rotated.get_token(summary["id"])
        self.assertIsNone(token["plainToken"])
        self.assertTrue(rotated.validate(plain))

    def test_update_ignores_unknown_fields(self):
        summary, _ = self.manager.create_token()
        updated = self.manager.update_token(
            summary["id"], {"name": "Renamed", "uploadCount": 99, "tokenHash": "x", "createdBy": "evil"}
        )
        self.assertEqual(updated["name"], "Renamed")
        self.assertEqual(updated["uploadCount"], 0)
        self.assertEqual(updated["createdBy"], summary["createdBy"])
        self.assertTrue(is_hashed(self._raw_tokens()[0]["tokenHash"]))

    def test_update_can_clear_expiry_and_limit(self):
        summary, plain = self.manager.create_token({"uploadLimit": 2})
        updated = self.manager.update_token(summary["id"], {"expiresAt": None, "uploadLimit": None})
        self.assertIsNone(updated["expiresAt"])
        self.assertIsNone(updated["uploadLimit"])
        self.assertTrue(self.manager.validate(plain))

    def test_unknown_ids(self):
        with self.assertRaises(NotFound):
            self.manager.get_token("missing")
        with self.assertRaises(NotFound):
            self.manager.update_token("missing", {"name": "x"})
        with self.assertRaises(NotFound) as ctx:
            self.manager.delete_token("missing")
        self.assertEqual(ctx.exception.code, "TOKEN_NOT_FOUND")
        self.assertFalse(self.manager.increment_upload_count("missing"))

    def test_delete_invalidates_token(self):
        summary, plain = self.manager.create_token()
        self.manager.delete_token(summary["id"])
        self.assertEqual(self.manager.validate(plain).code, "INVALID_TOKEN")

    def test_reserve_caps_at_remaining_uploads(self):
        summary, plain = self.manager.create_token({"uploadLimit": 3})
        outcome = self.manager.reserve_uploads(summary["id"], 5)
        self.assertTrue(outcome)
        granted, reserved = outcome.payload
        self.assertEqual(granted, 3)
        self.assertEqual(reserved["uploadCount"], 3)
        self.assertEqual(self._raw_tokens()[0]["uploadCount"], 3)

        again = self.manager.reserve_uploads(summary["id"], 1)
        self.assertEqual(again.code, "TOKEN_LIMIT_REACHED")
        self.assertEqual(self.manager.validate(plain).code, "TOKEN_LIMIT_REACHED")

    def test_release_returns_unused_slots(self):
        summary, plain = self.manager.create_token({"uploadLimit": 2})
        self.manager.reserve_uploads(summary["id"], 2)
        self.manager.release_uploads(summary["id"], 1)
        self.assertEqual(self._raw_tokens()[0]["uploadCount"], 1)
        self.assertEqual(remaining_uploads(self.manager.validate(plain).payload), 1)

        self.manager.release_uploads(summary["id"], 10)
        self.assertEqual(self._raw_tokens()[0]["uploadCount"], 0)
        self.manager.release_uploads("missing", 1)

    def test_reserve_unlimited_and_rejected_tokens(self):
        summary, _ = self.manager.create_token()
        granted, reserved = self.manager.reserve_uploads(summary["id"], 4).payload
        self.assertEqual(granted, 4)
        self.assertEqual(reserved["uploadCount"], 4)

        self.manager.update_token(summary["id"], {"enabled": False})
        self.assertEqual(self.manager.reserve_uploads(summary["id"], 1).code, "TOKEN_DISABLED")
        self.assertEqual(self.manager.reserve_uploads("missing", 1).code, "INVALID_TOKEN")

    def test_concurrent_reservations_never_exceed_limit(self):
        summary, _ = self.manager.create_token({"uploadLimit": 1})
        barrier = threading.Barrier(8)
        granted = []

        def reserve():
            barrier.wait()
            outcome = self.manager.reserve_uploads(summary["id"], 1)
            if outcome:
                granted.append(outcome.payload[0])

        workers = [threading.Thread(target=reserve) for _ in range(8)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self.assertEqual(sum(granted), 1)
        self.assertEqual(self._raw_tokens()[0]["uploadCount"], 1)

    def test_target_folder_is_normalized(self):
        summary, _ = self.manager.create_token({"targetFolder": "/family//2024/"})
        self.assertEqual(summary["targetFolder"], "family/2024")


if __name__ == "__main__":
    unittest.main()
