import logging
from pathlib import Path
from typing import Iterable, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError

from lobsters_rss.config import FeedConfig
from lobsters_rss.models.content import ScoredArticle


DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_XML_ESCAPES = (
    ("&", "&amp;"),  # must run first
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#39;"),
)


def escape_xml(value: object) -> str:
    """Escape the five XML-reserved characters exactly once."""
    text = "" if value is None else str(value)
    for char, entity in _XML_ESCAPES:
        text = text.replace(char, entity)
    return text


class CompilationError(Exception):
    """Custom exception for feed rendering failures"""
    pass


class FeedCompiler:
    """
    Renders scored articles into the RSS 2.0 document served to readers.

    Text fields go through ``xml_escape``. ``pubDate`` is passed through as
    the upstream feed wrote it, since it is already an RFC 822 date.
    """

    def __init__(self, config: FeedConfig, template_dir: Optional[str] = None) -> None:
        self.config = config
        self.template_dir = str(template_dir or DEFAULT_TEMPLATE_DIR)

        try:
            self.env = Environment(
                loader=FileSystemLoader(self.template_dir),
                autoescape=False,
                trim_blocks=True,
                lstrip_blocks=True,
            )
        except Exception as e:  # noqa: BLE001
            raise CompilationError(f"Failed to initialize Jinja2 environment: {e}") from e

        self.env.filters["xml_escape"] = escape_xml
        self.logger = logging.getLogger(__name__)

    def compile_feed(self, articles: Iterable[ScoredArticle]) -> str:
        """Render already filtered and ordered articles."""
        try:
            template = self.env.get_template("feed.xml.j2")
            return template.render(
                channel_title=self.config.feed_title,
                channel_link=self.config.feed_link,
                articles=list(articles),
            )
        except TemplateError as e:
            self.logger.error(f"Feed template rendering failed: {e}")
            raise CompilationError(f"Feed template rendering failed: {e}") from e
