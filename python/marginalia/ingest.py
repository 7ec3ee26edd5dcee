import io
from pathlib import Path
from typing import List, Union

import structlog
from docx import Document as open_docx
from docx.table import Table
from docx.text.paragraph import Paragraph

from marginalia.document import Block, Document, from_text
from marginalia.utils.docx import get_heading_level, get_paragraph_text, iter_block_items

logger = structlog.get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".text"}


def document_from_docx_stream(file_stream: io.BytesIO) -> Document:
    """
    Reads the body of a DOCX manuscript into a Document, one block per
    non-empty paragraph. Table rows become one block each, cells joined
    with " | ".
    """
    try:
        file_stream.seek(0)
        docx = open_docx(file_stream)
        blocks = _collect_blocks(docx)
    except Exception as e:
        logger.error(f"Text extraction failed: {e}", exc_info=True)
        raise ValueError(f"Could not extract text: {str(e)}") from e

    logger.debug(f"Loaded {len(blocks)} blocks from DOCX.")
    return Document(blocks=tuple(blocks))


def _collect_blocks(container) -> List[Block]:
    blocks = []
    for item in iter_block_items(container):
        if isinstance(item, Paragraph):
            text = get_paragraph_text(item).strip()
            if not text:
                continue
            kind = "heading" if get_heading_level(item) else "paragraph"
            blocks.append(Block(text=text, kind=kind))

        elif isinstance(item, Table):
            for row in item.rows:
                seen = set()
                cells = []
                for cell in row.cells:
                    # Merged cells are yielded once per grid column
                    if cell._tc in seen:
                        continue
                    seen.add(cell._tc)
                    cells.append(" ".join(b.text for b in _collect_blocks(cell)))
                row_text = " | ".join(cells).strip()
                if row_text.strip("| "):
                    blocks.append(Block(text=row_text))
    return blocks


def load_document(path: Union[str, Path]) -> Document:
    """Loads a manuscript from .docx or plain text/Markdown."""
    path = Path(path)
    if path.suffix.lower() == ".docx":
        with open(path, "rb") as f:
            return document_from_docx_stream(io.BytesIO(f.read()))

    if path.suffix.lower() not in TEXT_SUFFIXES:
        logger.warning(f"Unknown extension '{path.suffix}', reading {path.name} as plain text.")
    return from_text(path.read_text(encoding="utf-8"))
