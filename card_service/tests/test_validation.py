import unittest

from card_service.errors import ValidationError
from card_service.schemas import CardType
from card_service.validation import (
    parse_card_type,
    validate_bulk_update_request,
    validate_update_request,
)


class UpdateValidationTests(unittest.TestCase):
    def assertRejected(self, body, message, validator=validate_update_request):
        with self.assertRaises(ValidationError) as ctx:
            validator(body)
        self.assertEqual(str(ctx.exception), message)

    def test_accepts_every_card_type(self):
        for card_type in CardType:
            request = validate_update_request(
                {"cardType": card_type.value, "content": {}, "userId": "u1"}
            )
            self.assertEqual(request.cardType, card_type)
            self.assertEqual(request.content, {})

    def test_user_id_is_optional_at_this_layer(self):
        request = validate_update_request({"cardType": "hero", "content": {"x": 1}})
        self.assertIsNone(request.userId)

    def test_rejects_unknown_card_type(self):
        self.assertRejected(
            {"cardType": "sidebar", "content": {}}, "Invalid or missing cardType"
        )
        self.assertRejected({"content": {}}, "Invalid or missing cardType")

    def test_rejects_non_object_content(self):
        for content in ([1, 2], "text", 3, None):
            self.assertRejected(
                {"cardType": "hero", "content": content},
                "Invalid or missing content object",
            )
        self.assertRejected({"cardType": "hero"}, "Invalid or missing content object")

    def test_rejects_non_string_user_id(self):
        self.assertRejected(
            {"cardType": "hero", "content": {}, "userId": 42}, "Invalid userId format"
        )

    def test_rejects_non_object_body(self):
        self.assertRejected(["hero"], "Request body must be a JSON object")


class BulkValidationTests(unittest.TestCase):
    def assertRejected(self, body, message):
        with self.assertRaises(ValidationError) as ctx:
            validate_bulk_update_request(body)
        self.assertEqual(str(ctx.exception), message)

    def test_accepts_valid_batch(self):
        request = validate_bulk_update_request(
            {
                "userId": "u1",
                "updates": [
                    {"cardType": "hero", "content": {"a": 1}},
                    {"cardType": "roadmap", "content": {}},
                ],
            }
        )
        self.assertEqual(
            [u.cardType for u in request.updates], [CardType.HERO, CardType.ROADMAP]
        )

    def test_requires_updates_array(self):
        self.assertRejected({"userId": "u1"}, "Missing or invalid updates array")
        self.assertRejected(
            {"updates": {"cardType": "hero"}}, "Missing or invalid updates array"
        )

    def test_names_the_offending_item(self):
        self.assertRejected(
            {
                "updates": [
                    {"cardType": "hero", "content": {}},
                    {"cardType": "bogus", "content": {}},
                ]
            },
            "Invalid cardType: bogus",
        )
        self.assertRejected(
            {"updates": [{"cardType": "journal", "content": "entry"}]},
            "Invalid content for cardType: journal",
        )

    def test_rejects_non_string_user_id(self):
        self.assertRejected({"updates": [], "userId": ["u1"]}, "Invalid userId format")


class CardTypeParamTests(unittest.TestCase):
    def test_parse_card_type(self):
        self.assertEqual(parse_card_type("quickstart"), CardType.QUICKSTART)
        with self.assertRaises(ValidationError):
            parse_card_type("")
        with self.assertRaises(ValidationError):
            parse_card_type("HERO")


if __name__ == "__main__":
    unittest.main()
