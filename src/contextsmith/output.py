"""Render bundles as Markdown, JSON, plain text or XML, and write them out."""

import json
import sys
from pathlib import Path
from typing import Optional

from contextsmith.exceptions import ContextSmithError, ValidationError
from contextsmith.logger import get_logger
from contextsmith.models import Bundle

logger = get_logger()

FORMATS = ("markdown", "json", "plain", "xml")


def format_bundle(bundle: Bundle, fmt: str = "markdown") -> str:
    """Render *bundle* in *fmt*.

    Raises:
        ValidationError: unknown format name.
    """
    if fmt == "markdown":
        return format_markdown(bundle)
    if fmt == "json":
        return format_json(bundle)
    if fmt == "plain":
        return format_plain(bundle)
    if fmt == "xml":
        return format_xml(bundle)
    raise ValidationError("format", f"'{fmt}' is not one of {', '.join(FORMATS)}")


def _with_newline(content: str) -> str:
    return content if content.endswith("\n") else content + "\n"


def format_markdown(bundle: Bundle) -> str:
    parts = ["# Context Bundle\n\n"]
    if bundle.summary:
        parts.append(f"> {bundle.summary}\n\n")

    for section in bundle.sections:
        parts.append(f"## `{section.file_path}`\n")
        if section.reason:
            parts.append(f"*{section.reason}*\n")
        parts.append(f"```{section.language}\n")
        parts.append(_with_newline(section.content))
        parts.append("```\n\n")

    return "".join(parts)


def format_json(bundle: Bundle) -> str:
    return json.dumps(bundle.to_dict(), indent=2)


def format_plain(bundle: Bundle) -> str:
    parts = []
    if bundle.summary:
        parts.append(f"{bundle.summary}\n\n")

    for section in bundle.sections:
        parts.append(f"--- {section.file_path} ---\n")
        parts.append(_with_newline(section.content))
        parts.append("\n")

    return "".join(parts)


def escape_xml(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _cdata(text: str) -> str:
    # "]]>" cannot appear inside a CDATA block; split it across two blocks
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def format_xml(bundle: Bundle) -> str:
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>\n',
        "<bundle>\n",
        f"  <summary>{escape_xml(bundle.summary)}</summary>\n",
    ]
    for section in bundle.sections:
        parts.append("  <section>\n")
        parts.append(f"    <file_path>{escape_xml(section.file_path)}</file_path>\n")
        parts.append(f"    <language>{escape_xml(section.language)}</language>\n")
        parts.append(f"    <reason>{escape_xml(section.reason)}</reason>\n")
        parts.append(f"    <content>{_cdata(section.content)}</content>\n")
        parts.append("  </section>\n")
    parts.append("</bundle>\n")
    return "".join(parts)


def write_output(text: str, out: Optional[Path] = None) -> None:
    """Write *text* to *out* (creating parent directories) or stdout."""
    if out is None:
        sys.stdout.write(text)
        sys.stdout.flush()
        return

    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ContextSmithError(f"failed to write output to '{out}': {e}") from e
    logger.debug(f"Wrote {len(text)} chars to {out}")
