import re

CONTENT_TYPES = ("movie", "tv")
DEFAULT_TOP_LIMIT = 10


class InvalidArgument(ValueError):
    """Raised when a content type or identifier cannot be used as a counter key."""


class StorageError(RuntimeError):
    """Raised when a view count could not be persisted."""


def safe_int(value, default=0):
    """
    Parse a value into an integer, tolerating strings and floats.

    Args:
        value (Any): Raw value to convert.
        default (int): Fallback value when parsing fails.

    Returns:
        int: Parsed integer or the default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(str(value).split()[0]))
    except (TypeError, ValueError, IndexError, OverflowError):
        return default


def sanitize_content_type(value):
    """
    Lowercase a content type and strip every character outside ``a-z``.

    Args:
        value (Any): Raw type taken from the request.

    Returns:
        str: Sanitized type, possibly empty.
    """
    if not isinstance(value, str):
        return ""
    return re.sub(r"[^a-z]", "", value.lower())


def sanitize_content_id(value):
    """
    Strip every non-digit character from a content identifier.

    Args:
        value (Any): Raw identifier taken from the request.

    Returns:
        str: Digit-only identifier, possibly empty.
    """
    if value is None or isinstance(value, bool):
        return ""
    return re.sub(r"[^0-9]", "", str(value))


def parse_view_request(raw_type, raw_id):
    """
    Sanitize and validate a ``(type, id)`` pair.

    Args:
        raw_type (Any): Type as sent by the client (``"Movie!"`` is accepted).
        raw_id (Any): Identifier as sent by the client (``"tt123"`` becomes ``"123"``).

    Returns:
        tuple[str, str]: Normalized content type and identifier.

    Raises:
        InvalidArgument: When the type is not a known content type or the id has no digits.
    """
    content_type = sanitize_content_type(raw_type)
    content_id = sanitize_content_id(raw_id)
    if content_type not in CONTENT_TYPES or not content_id:
        raise InvalidArgument("Invalid type or ID")
    return content_type, content_id


def build_view_key(content_type: str, content_id: str):
    """Join a validated type and id into the ``<type>_<id>`` storage key."""
    return f"{content_type}_{content_id}"


def split_view_key(key: str):
    """
    Recover the type and id from a storage key.

    Args:
        key (str): Key such as ``"movie_550"``.

    Returns:
        tuple[str, str] | None: Type and id, or None when the key does not follow the layout.
    """
    if not isinstance(key, str):
        return None
    for content_type in CONTENT_TYPES:
        prefix = f"{content_type}_"
        if key.startswith(prefix):
            content_id = key[len(prefix):]
            if content_id.isdigit() and content_id.isascii():
                return content_type, content_id
            return None
    return None


def normalize_table(raw_table):
    """
    Coerce decoded storage content into a ``{key: count}`` mapping.

    Anything that is not a JSON object is an empty table. Counts that cannot be
    read as integers are dropped, negative counts are clamped to zero.

    Args:
        raw_table (Any): Decoded content of the store.

    Returns:
        dict[str, int]: Clean counter table.
    """
    if not isinstance(raw_table, dict):
        return {}
    table = {}
    for key, value in raw_table.items():
        count = safe_int(value, None)
        if count is None:
            continue
        table[str(key)] = max(count, 0)
    return table


def id_sort_key(content_id: str):
    """Order digit strings numerically without converting them."""
    return (len(content_id), content_id)


def build_top_viewed(table: dict, limit: int = DEFAULT_TOP_LIMIT):
    """
    Rank the most viewed ids per content type.

    Args:
        table (dict): Counter table keyed by ``<type>_<id>``.
        limit (int): Maximum number of ids returned per type.

    Returns:
        dict[str, list[str]]: ``{"movies": [...], "tv": [...]}`` ordered by views
        descending, ties broken by id ascending.
    """
    partitions = {content_type: [] for content_type in CONTENT_TYPES}
    for key, count in (table or {}).items():
        parts = split_view_key(key)
        if not parts:
            continue
        content_type, content_id = parts
        partitions[content_type].append((content_id, safe_int(count)))

    ranked = {}
    for content_type, entries in partitions.items():
        entries.sort(key=lambda entry: (-entry[1], id_sort_key(entry[0])))
        ranked[content_type] = [content_id for content_id, _ in entries[:max(limit, 0)]]

    return {"movies": ranked["movie"], "tv": ranked["tv"]}
