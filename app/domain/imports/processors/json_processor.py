import json
from typing import List, Dict, Any, Tuple

# Wrappers produced by the booking API export and by the downloadable template.
ENVELOPE_KEYS = ("appointments", "data")


def process_json(file_content: bytes) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Process a JSON appointment export and return (records, column_names).

    Accepts a list of objects, a single object, or an object wrapping the list
    under ``appointments`` / ``data``. Column names are the union of object
    keys in first-seen order.
    """
    data = json.loads(file_content.decode("utf-8-sig"))

    if isinstance(data, dict):
        for key in ENVELOPE_KEYS:
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            data = [data]

    if not isinstance(data, list):
        raise ValueError("JSON must contain an object or array of objects")

    records: List[Dict[str, Any]] = []
    columns: Dict[str, None] = {}
    for index, item in enumerate(data, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"JSON item {index} is not an object")
        record = {}
        for key, value in item.items():
            column = str(key).strip()
            columns.setdefault(column, None)
            if isinstance(value, str):
                value = value.strip() or None
            record[column] = value
        records.append(record)

    return records, list(columns)
