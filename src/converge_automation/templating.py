from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

import jinja2
from jinja2 import meta

from .errors import MissingVariable, RenderError


class TemplateRenderer:
    """Expand ``{{ name }}`` placeholders with Jinja2, refusing undefined names."""

    SINGLE_EXPR_RE = re.compile(r"^\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")
    UNDEFINED_RE = re.compile(r"^'([A-Za-z_][A-Za-z0-9_]*)' is undefined$")

    def __init__(self) -> None:
        self.env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, text: str, variables: Mapping[str, Any]) -> str:
        try:
            ast = self.env.parse(text)
        except jinja2.TemplateSyntaxError as exc:
            raise RenderError(f"line {exc.lineno}: {exc.message}") from None
        try:
            return self.env.from_string(text).render(**variables)
        except jinja2.UndefinedError as exc:
            # StrictUndefined raises on use only; ``default`` and ``is defined`` see the name as undefined
            message = str(exc.message)
            match = self.UNDEFINED_RE.match(message)
            undeclared = meta.find_undeclared_variables(ast)
            if match and match.group(1) in undeclared:
                name = match.group(1)
                raise RenderError(f"undefined variables: {name}", missing=[name]) from None
            raise RenderError(message) from None

    def render_file(self, path: Path, variables: Mapping[str, Any]) -> str:
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise RenderError(f"template {path} not found") from None
        try:
            return self.render(text, variables)
        except RenderError as exc:
            raise RenderError(f"{path}: {exc}", missing=exc.missing) from None

    def render_params(self, params: Any, variables: Mapping[str, Any]) -> Any:
        """Render every string inside ``params``, keeping native types for lone placeholders."""

        if isinstance(params, dict):
            return {key: self.render_params(value, variables) for key, value in params.items()}
        if isinstance(params, list):
            return [self.render_params(value, variables) for value in params]
        if not isinstance(params, str) or ("{{" not in params and "{%" not in params):
            return params
        match = self.SINGLE_EXPR_RE.match(params.strip())
        if match:
            name = match.group(1)
            if name not in variables:
                raise MissingVariable(name)
            return variables[name]
        try:
            return self.render(params, variables)
        except RenderError as exc:
            if exc.missing:
                raise MissingVariable(exc.missing[0]) from None
            raise
