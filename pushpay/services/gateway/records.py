"""Helpers for provider payload fields and durable record shapes."""

from typing import Any

from pushpay.common.documents import without_none

CLIENT_FIELDS = (
    "paymentId",
    "userId",
    "status",
    "completedAt",
    "mpesaReceiptNumber",
    "amount",
    "phoneNumber",
    "resultCode",
    "resultDesc",
)


def metadata_value(metadata: dict[str, Any] | None, name: str, default: Any = None) -> Any:
    """Value of the `CallbackMetadata.Item` entry called `name`, else `default`."""

    if not isinstance(metadata, dict):
        return default
    items = metadata.get("Item")
    if not isinstance(items, list):
        return default
    for item in items:
        if isinstance(item, dict) and item.get("Name") == name:
            value = item.get("Value")
            return default if value is None else value
    return default


def metadata_items(metadata: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Normalise `CallbackMetadata.Item` to `[{"name", "value"}]` for storage."""

    if not isinstance(metadata, dict) or not isinstance(metadata.get("Item"), list):
        return []
    return [
        {"name": item.get("Name") or "UnknownField", "value": item.get("Value")}
        for item in metadata["Item"]
        if isinstance(item, dict)
    ]


def result_parameter(parameters: list[dict[str, Any]], key: str) -> Any:
    """Value of a transaction-status `ResultParameter` by `Key`."""

    for param in parameters:
        if isinstance(param, dict) and param.get("Key") == key:
            return param.get("Value")
    return None


def client_projection(record: dict[str, Any]) -> dict[str, Any]:
    """Client-safe subset of an internal transaction record."""

    return without_none({field: record.get(field) for field in CLIENT_FIELDS})


def parse_result_code(raw: Any) -> int | None:
    """Provider result codes arrive as ints or numeric strings."""

    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
