import re
import unicodedata


def parse_bool(value):
    if value is None:
        return False
    value = str(value).strip().lower()
    return value in {"1", "true", "yes", "y", "on", "t"}


def parse_float(value):
    if value in (None, "", " "):
        return None
    try:
        return float(str(value).replace(",", "."))
    except (ValueError, TypeError):
        return None


def parse_int(value, default=None):
    if value in (None, ""):
        return default
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return default


def parse_csv_list(value) -> list[str]:
    """Split ``a,b , c`` (or a list of such strings) into clean tokens."""
    if value is None:
        return []
    raw = value if isinstance(value, (list, tuple)) else [value]
    items = []
    for chunk in raw:
        for token in str(chunk).split(","):
            token = token.strip()
            if token and token not in items:
                items.append(token)
    return items


def slugify(value: str) -> str:
    value = str(value or "")
    normalized = unicodedata.normalize("NFKD", value)
    cleaned = re.sub(r"[^\w\s-]", "", normalized, flags=re.UNICODE)
    trimmed = cleaned.strip().lower()
    return re.sub(r"[-\s]+", "-", trimmed)


def unique_slug(session, model, base_slug: str, exclude_id: int | None = None) -> str:
    slug_candidate = base_slug
    counter = 1
    slug_field = getattr(model, "slug")
    id_field = getattr(model, "id")
    while True:
        query = session.query(model).filter(slug_field == slug_candidate)
        if exclude_id is not None:
            query = query.filter(id_field != exclude_id)
        if not query.first():
            break
        counter += 1
        slug_candidate = f"{base_slug}-{counter}"
    return slug_candidate


def isoformat(value):
    return value.isoformat() if value is not None else None
