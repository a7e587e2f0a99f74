"""
DynamoDB attribute-value decoder.

Converts low-level stream images ({"S": "x"}, {"N": "1"}, ...) into plain
Python values.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from boto3.dynamodb.types import Binary, TypeDeserializer

_deserializer = TypeDeserializer()


def plain_value(value: Any) -> Any:
    """
    Recursively convert deserialized DynamoDB values to plain Python types.

    Handles:
    - Decimal -> int when integral, float when the float reads back as
      the same number, Decimal otherwise (DynamoDB keeps 38 digits)
    - Binary -> bytes
    - set -> sorted list (insertion order when members are not comparable)
    - Nested dicts and lists
    """
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        as_float = float(value)
        if Decimal(repr(as_float)) == value:
            return as_float
        return value

    if isinstance(value, Binary):
        return bytes(value)

    if isinstance(value, dict):
        return {k: plain_value(v) for k, v in value.items()}

    if isinstance(value, list):
        return [plain_value(v) for v in value]

    if isinstance(value, (set, frozenset)):
        members = [plain_value(v) for v in value]
        try:
            return sorted(members)
        except TypeError:
            return members

    return value


def unmarshall(image: Optional[Mapping[str, Any]]) -> Optional[dict]:
    """
    Decode a DynamoDB attribute map into a plain dict.

    Example:
        >>> unmarshall({"pk": {"S": "x"}, "count": {"N": "2"}})
        {'pk': 'x', 'count': 2}
    """
    if image is None:
        return None
    return {
        name: plain_value(_deserializer.deserialize(attribute))
        for name, attribute in image.items()
    }
