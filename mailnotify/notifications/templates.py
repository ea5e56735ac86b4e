"""Template rendering for notification bodies using Jinja2.

Bodies come from notification specifications rather than files, so parsed
templates are cached by the SHA-256 of the body text. Two notification types
with the same body share one compiled template; editing a body yields a new
key and therefore a fresh parse.
"""

import dataclasses
from typing import Any, Dict, Mapping, Optional

from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateSyntaxError,
)
from markupsafe import Markup
from pydantic import BaseModel

from mailnotify.logging import get_logger
from mailnotify.utils.hashing import compute_template_key

from .models import TemplateParseError, TemplateRenderError

logger = get_logger(__name__, component="renderer")

WRAPPER_CONTENT_FIELD = "Content"


def model_to_context(model: Any) -> Dict[str, Any]:
    """Turn a typed data model into a template context.

    Accepts pydantic models, dataclass instances and mappings.

    Raises:
        TemplateRenderError: For any other model type
    """
    if model is None:
        return {}
    if isinstance(model, BaseModel):
        return model.model_dump()
    if dataclasses.is_dataclass(model) and not isinstance(model, type):
        return dataclasses.asdict(model)
    if isinstance(model, Mapping):
        return dict(model)
    raise TemplateRenderError(
        f"Unsupported template model type: {type(model).__name__}"
    )


class TemplateRenderer:
    """Renders specification body templates with Jinja2.

    Uses HTML auto-escaping and strict undefined checking, so a model missing
    a field referenced by the template fails loudly instead of rendering a
    blank. Optionally wraps every rendered body in a packaged layout template.
    """

    def __init__(
        self,
        wrapper_template: Optional[str] = None,
        template_dir: str = "email_templates",
    ):
        """Initialize template renderer with Jinja2 environment.

        Args:
            wrapper_template: Filename of a layout template in the package's
                template directory; the rendered body is passed to it as
                ``Content``. No wrapping when None.
            template_dir: Directory name within the mailnotify.notifications package
        """
        self.wrapper_template_name = wrapper_template

        self.env = Environment(
            loader=PackageLoader("mailnotify.notifications", template_dir),
            autoescape=True,
            undefined=StrictUndefined,
        )

        self._cache: Dict[str, Template] = {}
        self.parse_count = 0

        logger.debug(
            f"Initialized TemplateRenderer (wrapper={wrapper_template or 'none'})"
        )

    @staticmethod
    def compute_template_key(template_body: str) -> str:
        return compute_template_key(template_body)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def get_template(self, template_key: str, template_body: str) -> Template:
        """Return the parsed template for a body, parsing it on first use.

        Args:
            template_key: SHA-256 hex digest of ``template_body``
            template_body: Raw template text

        Raises:
            TemplateParseError: If the body has syntax errors
        """
        template = self._cache.get(template_key)
        if template is not None:
            return template

        template = self._parse(template_body)
        # Another thread may have inserted first; every caller gets that entry
        return self._cache.setdefault(template_key, template)

    def render(self, template_key: Optional[str], template_body: str, model: Any) -> str:
        """Render a body template against a data model.

        Args:
            template_key: Cache key (SHA-256 of the body); computed when None
            template_body: Raw template text
            model: Pydantic model, dataclass or mapping exposed to the template

        Returns:
            Rendered HTML (possibly empty; the caller decides whether that matters)

        Raises:
            TemplateParseError: If the body has syntax errors
            TemplateRenderError: If binding the model fails
        """
        key = template_key or compute_template_key(template_body)
        template = self.get_template(key, template_body)
        context = model_to_context(model)

        try:
            body = template.render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, extra={"event": "template.render.failure", "template_key": key[:12]})
            raise TemplateRenderError(error_msg) from e
        except Exception as e:
            error_msg = f"Unexpected error during template rendering: {e}"
            logger.error(error_msg, exc_info=True)
            raise TemplateRenderError(error_msg) from e

        if self.wrapper_template_name:
            body = self._wrap(body, context)

        logger.debug(f"Rendered template {key[:12]} ({len(body)} chars)")
        return body

    def _parse(self, template_body: str) -> Template:
        try:
            template = self.env.from_string(template_body)
        except TemplateSyntaxError as e:
            diagnostics = f"{e.message} (line {e.lineno})"
            logger.error(
                f"Content template parsing errors: {diagnostics}",
                extra={"event": "template.parse.failure"},
            )
            raise TemplateParseError(f"Content template parsing errors: {diagnostics}") from e

        self.parse_count += 1
        return template

    def _wrap(self, body: str, context: Dict[str, Any]) -> str:
        try:
            wrapper = self.env.get_template(self.wrapper_template_name)
            return wrapper.render({**context, WRAPPER_CONTENT_FIELD: Markup(body)})
        except TemplateSyntaxError as e:
            raise TemplateParseError(
                f"Wrapper template parsing errors: {e.message} (line {e.lineno})"
            ) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Wrapper template rendering failed: {e}") from e
