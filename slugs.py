import re
import unicodedata


def slugify(value: str) -> str:
    """Lower-case ``value`` and reduce it to ASCII letters, digits and single hyphens."""
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
