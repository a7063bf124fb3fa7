"""Jinja2-based renderer for the configuration templates shipped with the package."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _get_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=False,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render(template_name: str, **context) -> str:
    """Render ``template_name`` from the package template directory."""
    return _get_env().get_template(template_name).render(**context)
