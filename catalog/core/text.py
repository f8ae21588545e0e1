import re

from markupsafe import Markup
import markdown as md
import bleach
from bleach.css_sanitizer import CSSSanitizer

_HTML_PATTERN = re.compile(r"</?[a-z][\s\S]*?>", re.IGNORECASE)

_TURKISH_FOLDS = str.maketrans(
    {
        "ş": "s",
        "ğ": "g",
        "ü": "u",
        "ö": "o",
        "ı": "i",
        "ç": "c",
        "\u0307": None,  # combining dot left behind by "İ".lower()
    }
)
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]")
_REPEATED_HYPHENS = re.compile(r"-+")

_ALLOWED_TAGS = [
    "a",
    "p",
    "br",
    "strong",
    "b",
    "em",
    "i",
    "u",
    "ul",
    "ol",
    "li",
    "blockquote",
    "span",
    "h3",
    "h4",
]

_ALLOWED_ATTRIBUTES = {
    "a": ["href", "title", "rel"],
    "span": ["style"],
    "p": ["style"],
}

_ALLOWED_CSS = [
    "color",
    "font-weight",
    "font-style",
    "text-decoration",
    "text-align",
]

_CSS_SANITIZER = CSSSanitizer(allowed_css_properties=_ALLOWED_CSS)


def slugify(value: str) -> str:
    """Build a URL-safe slug, folding Turkish letters to their ASCII base."""
    value = (value or "").lower().translate(_TURKISH_FOLDS)
    value = _NON_SLUG_CHARS.sub("-", value)
    value = _REPEATED_HYPHENS.sub("-", value)
    return value.strip("-")


def render_rich_text(value: str) -> Markup:
    raw = (value or "").strip()
    if not raw:
        return Markup("")

    if _HTML_PATTERN.search(raw):
        html = raw
    else:
        html = md.markdown(raw, extensions=["extra", "sane_lists"])

    cleaned = bleach.clean(
        html,
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRIBUTES,
        css_sanitizer=_CSS_SANITIZER,
        strip=True,
    )
    return Markup(cleaned)
