"""
Read-side helpers for walking DOCX manuscripts with python-docx.
"""

from typing import Iterator, Optional, Union

import structlog
from docx.document import Document as DocumentObject
from docx.oxml.ns import qn
from docx.table import Table, _Cell
from docx.text.paragraph import Paragraph
from docx.text.run import Run

logger = structlog.get_logger(__name__)


def iter_block_items(parent) -> Iterator[Union[Paragraph, Table]]:
    """
    Yields Paragraph or Table objects in the order they appear in the XML.
    Supports Document and Cell objects. Recursion is left to the caller.
    """
    if isinstance(parent, DocumentObject):
        parent_elm = parent.element.body
    elif isinstance(parent, _Cell):
        parent_elm = parent._tc
    elif hasattr(parent, "_element"):
        parent_elm = parent._element
    else:
        raise ValueError(f"Unsupported parent type for iteration: {type(parent)}")

    for child in parent_elm.iterchildren():
        if child.tag == qn("w:p"):
            yield Paragraph(child, parent)
        elif child.tag == qn("w:tbl"):
            yield Table(child, parent)


def get_run_text(run: Run) -> str:
    """
    Extracts text from a run, converting <w:tab/> to spaces and <w:br/> to newlines.
    Standard run.text ignores these. Deleted text (w:delText) is not part of
    the manuscript and is skipped.
    """
    text = ""
    for child in run._element:
        if child.tag == qn("w:t"):
            text += child.text or ""
        elif child.tag == qn("w:tab"):
            text += " "
        elif child.tag in (qn("w:br"), qn("w:cr")):
            text += "\n"
    return text


def get_paragraph_text(paragraph: Paragraph) -> str:
    """Visible text of a paragraph, including runs wrapped in w:ins."""
    parts = []
    for child in paragraph._p.iterchildren():
        if child.tag == qn("w:r"):
            parts.append(get_run_text(Run(child, paragraph)))
        elif child.tag in (qn("w:ins"), qn("w:hyperlink"), qn("w:smartTag")):
            for r in child.iterchildren(qn("w:r")):
                parts.append(get_run_text(Run(r, paragraph)))
    return "".join(parts)


def get_heading_level(paragraph: Paragraph) -> Optional[int]:
    """
    Heading level (1-9) from the outline level or the style name, None for
    body text.
    """
    # python-docx outline_level: 0=Level 1, ..., 8=Level 9, 9=Body Text
    lvl = getattr(paragraph.paragraph_format, "outline_level", None)
    if lvl is not None and 0 <= lvl <= 8:
        return lvl + 1

    style_name = paragraph.style.name if paragraph.style is not None else ""
    if not style_name:
        return None

    if style_name.startswith("Heading"):
        try:
            return int(style_name.replace("Heading", "").strip())
        except ValueError:
            return None

    if style_name == "Title":
        return 1

    return None
