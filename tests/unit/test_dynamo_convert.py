"""Unit tests for DynamoDB attribute decoding."""

from decimal import Decimal

from boto3.dynamodb.types import Binary

from shardstream.utils.dynamo_convert import plain_value, unmarshall


class TestPlainValue:
    """Test plain_value conversion."""

    def test_decimal_integral(self):
        assert plain_value(Decimal("42")) == 42
        assert isinstance(plain_value(Decimal("42")), int)

    def test_decimal_fraction(self):
        assert plain_value(Decimal("1.5")) == 1.5
        assert isinstance(plain_value(Decimal("0.1")), float)

    def test_high_precision_decimal_kept(self):
        """Test numbers a float cannot hold keep every digit."""
        value = Decimal("3.1415926535897932384626433832795028841")
        assert plain_value(value) == value
        assert isinstance(plain_value(value), Decimal)

    def test_binary(self):
        assert plain_value(Binary(b"\x00\x01")) == b"\x00\x01"

    def test_sets_become_sorted_lists(self):
        assert plain_value({Decimal("3"), Decimal("1")}) == [1, 3]
        assert plain_value({"b", "a"}) == ["a", "b"]

    def test_nested(self):
        value = {"a": [Decimal("1"), {"b": Decimal("2.5")}], "c": None, "d": True}
        assert plain_value(value) == {"a": [1, {"b": 2.5}], "c": None, "d": True}


class TestUnmarshall:
    """Test unmarshall."""

    def test_none(self):
        assert unmarshall(None) is None

    def test_all_types(self):
        image = {
            "pk": {"S": "order#1"},
            "qty": {"N": "3"},
            "price": {"N": "9.99"},
            "active": {"BOOL": True},
            "note": {"NULL": True},
            "tags": {"SS": ["b", "a"]},
            "lines": {"L": [{"M": {"sku": {"S": "x"}, "n": {"N": "1"}}}]},
            "blob": {"B": b"raw"},
        }

        assert unmarshall(image) == {
            "pk": "order#1",
            "qty": 3,
            "price": 9.99,
            "active": True,
            "note": None,
            "tags": ["a", "b"],
            "lines": [{"sku": "x", "n": 1}],
            "blob": b"raw",
        }

    def test_empty_image(self):
        assert unmarshall({}) == {}
