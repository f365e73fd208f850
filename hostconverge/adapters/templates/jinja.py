"""
Jinja2 template renderer.

Templates are looked up relative to the manifest's ``templates_dir``.
Undefined variables are errors (StrictUndefined); a missing variable
in a config file is never rendered as an empty string.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import jinja2

from hostconverge.adapters.base import TemplateRenderer
from hostconverge.core.errors import TemplateError

logger = logging.getLogger(__name__)


class JinjaTemplateRenderer(TemplateRenderer):
    def __init__(self, templates_dir: str):
        self._templates_dir = templates_dir
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(templates_dir),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    @property
    def name(self) -> str:
        return "template"

    @property
    def templates_dir(self) -> str:
        return self._templates_dir

    def is_available(self) -> bool:
        return os.path.isdir(self._templates_dir)

    def render(self, source: str, variables: Mapping[str, Any]) -> bytes:
        try:
            template = self._env.get_template(source)
            rendered = template.render(**variables)
        except jinja2.TemplateNotFound:
            raise TemplateError(
                self.name, source, f"template not found in {self._templates_dir}",
            ) from None
        except jinja2.TemplateSyntaxError as e:
            raise TemplateError(self.name, source, f"syntax error line {e.lineno}: {e.message}") from None
        except jinja2.UndefinedError as e:
            raise TemplateError(self.name, source, f"undefined variable: {e.message}") from None

        logger.debug("Rendered %s (%d chars)", source, len(rendered))
        return rendered.encode("utf-8")
