"""HTML allow-list sanitizer for feed item bodies."""

from urllib.parse import urlparse

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, ProcessingInstruction

from .logging_config import create_execution_logger

ALLOWED_TAGS = frozenset(
    ["p", "br", "h2", "ul", "ol", "li", "strong", "em", "b", "i", "a", "img", "blockquote"]
)

ALLOWED_ATTRIBUTES = {
    "a": frozenset(["href", "target", "id"]),
    "img": frozenset(["src", "alt"]),
    "p": frozenset(["id"]),
    "h2": frozenset(["id"]),
    "strong": frozenset(["id"]),
}

# Tags whose content is dropped along with the tag
DISCARD_TAGS = frozenset(
    ["script", "style", "iframe", "noscript", "textarea", "object", "embed", "template"]
)

NON_TEXT_NODES = (CData, Comment, Declaration, Doctype, ProcessingInstruction)

URL_ATTRIBUTES = frozenset(["href", "src"])
ALLOWED_SCHEMES = frozenset(["http", "https", "mailto", "tel"])


class HtmlSanitizer:
    """Filters HTML down to a fixed tag and attribute allow-list."""

    def __init__(
        self,
        allowed_tags: frozenset[str] = ALLOWED_TAGS,
        allowed_attributes: dict[str, frozenset[str]] | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the sanitizer.

        Args:
            allowed_tags: Tag names kept in the output
            allowed_attributes: Per-tag attribute names kept in the output
            execution_id: Execution ID for logging context
        """
        self.allowed_tags = allowed_tags
        self.allowed_attributes = (
            ALLOWED_ATTRIBUTES if allowed_attributes is None else allowed_attributes
        )
        self.logger = create_execution_logger("sanitizer", execution_id)

    def sanitize(self, content: str | None) -> str:
        """Strip everything outside the allow-list from an HTML fragment.

        Disallowed elements are unwrapped so their text survives, except for
        script-like elements which are removed with their content. Never
        raises on malformed markup.

        Args:
            content: Raw HTML fragment

        Returns:
            Sanitized HTML fragment
        """
        if not content:
            return ""

        soup = BeautifulSoup(content, "html.parser")

        for node in soup.find_all(string=lambda s: isinstance(s, NON_TEXT_NODES)):
            node.extract()

        removed = 0
        for tag in soup.find_all(True):
            if tag.decomposed:
                continue
            if tag.name in DISCARD_TAGS:
                tag.decompose()
                removed += 1
            elif tag.name not in self.allowed_tags:
                tag.unwrap()
                removed += 1
            else:
                self._filter_attributes(tag)

        if removed:
            self.logger.debug("Removed disallowed elements", removed_count=removed)

        return str(soup)

    def _filter_attributes(self, tag) -> None:
        allowed = self.allowed_attributes.get(tag.name, frozenset())
        for name in list(tag.attrs):
            if name not in allowed:
                del tag.attrs[name]
            elif name in URL_ATTRIBUTES and not self._is_safe_url(tag.attrs[name]):
                del tag.attrs[name]
            elif isinstance(tag.attrs[name], list):
                tag.attrs[name] = " ".join(tag.attrs[name])

    def _is_safe_url(self, value) -> bool:
        if isinstance(value, list):
            value = " ".join(value)
        # Browsers ignore embedded whitespace and control characters in schemes
        compact = "".join(ch for ch in value if ch > " ").lower()
        try:
            scheme = urlparse(compact).scheme
        except ValueError:
            return False
        return not scheme or scheme in ALLOWED_SCHEMES
