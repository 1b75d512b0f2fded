import concurrent.futures
import threading
import time
import unittest
from unittest.mock import patch

from card_service.db import InMemoryDbClient
from card_service.errors import StoreError, ValidationError
from card_service.schemas import BulkUpdateRequest, CardType, UpdateCardRequest
from card_service.service import CardContentService, batch_item_key


class SlowDbClient(InMemoryDbClient):
    """Delays upserts for one card type so sibling items finish first."""

    def __init__(self, slow_type, delay=0.2):
        super().__init__()
        self.slow_type = slow_type
        self.delay = delay
        self.finished = []

    def upsert_card(self, user_id, card_type, content):
        if card_type == self.slow_type:
            time.sleep(self.delay)
        card = super().upsert_card(user_id, card_type, content)
        self.finished.append(card_type)
        return card


class CardContentServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.service = CardContentService(self.db)

    def _request(self, content, card_type="hero", user_id="u1"):
        return UpdateCardRequest(cardType=card_type, content=content, userId=user_id)

    def test_update_requires_user_id(self):
        request = self._request({}, user_id=None)
        with self.assertRaises(ValidationError):
            self.service.update_card(request, {})

    def test_concurrent_updates_leave_single_row(self):
        contents = [{"n": i} for i in range(25)]
        with concurrent.futures.ThreadPoolExecutor(max_workers=25) as pool:
            list(
                pool.map(
                    lambda c: self.service.update_card(self._request(c), c), contents
                )
            )

        cards = self.service.list_cards("u1")
        self.assertEqual(len(cards), 1)
        self.assertIn(cards[0].content, contents)
        self.assertEqual(len(self.db.logs), 25)

    def test_concurrent_fresh_key_is_logged_once(self):
        barrier = threading.Barrier(8)

        def submit(i):
            barrier.wait()
            content = {"n": i}
            return self.service.update_card(self._request(content), content, "fresh")

        with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(submit, range(8)))

        keyed = [log for log in self.db.logs if log.idempotency_key == "fresh"]
        self.assertEqual(len(keyed), 1)
        self.assertTrue(any(not r.replayed for r in results))
        self.assertEqual(len(self.service.list_cards("u1")), 1)

    def test_replayed_key_skips_upsert(self):
        first = self.service.update_card(self._request({"v": 1}), {}, "k1")
        second = self.service.update_card(self._request({"v": 2}), {}, "k1")
        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertIsNone(second.card)
        self.assertEqual(self.db.get_card("u1", CardType.HERO).content, {"v": 1})

    def test_returned_cards_do_not_alias_stored_content(self):
        written = self.db.upsert_card("u1", CardType.HABITS, {"streak": [1]})
        written.content["streak"].append(2)
        fetched = self.db.get_card("u1", CardType.HABITS)
        fetched.content["streak"].append(3)
        self.db.list_cards("u1")[0].content["streak"].append(4)
        self.assertEqual(self.db.get_card("u1", CardType.HABITS).content, {"streak": [1]})

    def test_single_update_key_blocks_bulk_with_same_key(self):
        self.service.update_card(self._request({"v": 1}), {}, "shared")
        request = BulkUpdateRequest(
            userId="u1", updates=[{"cardType": "journal", "content": {}}]
        )
        self.assertTrue(self.service.bulk_update(request, "shared").replayed)
        self.assertIsNone(self.db.get_card("u1", CardType.JOURNAL))

    def test_record_update_swallows_store_error(self):
        card = self.db.upsert_card("u1", CardType.HERO, {})
        with patch.object(
            self.db, "insert_update_log", side_effect=StoreError("down")
        ), self.assertLogs("card_service.service", level="ERROR"):
            self.assertIsNone(self.service.record_update(card, {}, "k"))

    def test_bulk_waits_for_slow_item(self):
        db = SlowDbClient(slow_type=CardType.HERO)
        service = CardContentService(db)
        request = BulkUpdateRequest(
            userId="u1",
            updates=[
                {"cardType": "hero", "content": {"slow": True}},
                {"cardType": "habits", "content": {}},
                {"cardType": "journal", "content": {}},
            ],
        )
        result = service.bulk_update(request)

        self.assertEqual(len(result.succeeded), 3)
        self.assertEqual(
            [o.card_type for o in result.outcomes],
            [CardType.HERO, CardType.HABITS, CardType.JOURNAL],
        )
        self.assertEqual(db.finished[-1], CardType.HERO)

    def test_bulk_scopes_key_per_item(self):
        request = BulkUpdateRequest(
            userId="u1",
            updates=[
                {"cardType": "hero", "content": {}},
                {"cardType": "roadmap", "content": {}},
            ],
        )
        self.service.bulk_update(request, "batch")
        keys = sorted(log.idempotency_key for log in self.db.logs)
        self.assertEqual(
            keys,
            [
                batch_item_key("batch", CardType.HERO),
                batch_item_key("batch", CardType.ROADMAP),
            ],
        )
        self.assertTrue(self.service.bulk_update(request, "batch").replayed)

    def test_empty_bulk_is_a_success(self):
        result = self.service.bulk_update(BulkUpdateRequest(userId="u1", updates=[]))
        self.assertEqual(result.outcomes, [])
        self.assertFalse(result.replayed)


if __name__ == "__main__":
    unittest.main()
