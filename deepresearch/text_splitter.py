import logging
from typing import List, Optional, Sequence


logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ("\n\n", "\n", ".", ",", ">", "<", " ", "")


class TextSplitter:
    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._check_sizes()

    def _check_sizes(self) -> None:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("Cannot have chunk_overlap >= chunk_size")

    def split_text(self, text: str) -> List[str]:
        raise NotImplementedError

    @staticmethod
    def _join_docs(docs: Sequence[str], separator: str) -> Optional[str]:
        text = separator.join(docs).strip()
        return text or None

    def merge_splits(self, splits: Sequence[str], separator: str) -> List[str]:
        docs: List[str] = []
        current: List[str] = []
        total = 0
        for split in splits:
            size = len(split)
            if total + size >= self.chunk_size:
                if total > self.chunk_size:
                    logger.warning(
                        "Created a chunk of size %s, which is longer than the specified %s",
                        total,
                        self.chunk_size,
                    )
                if current:
                    doc = self._join_docs(current, separator)
                    if doc is not None:
                        docs.append(doc)
                    # Drop leading splits until we are inside the overlap window
                    # and the next split fits.
                    while total > self.chunk_overlap or (total + size > self.chunk_size and total > 0):
                        total -= len(current[0])
                        current.pop(0)
            current.append(split)
            total += size
        doc = self._join_docs(current, separator)
        if doc is not None:
            docs.append(doc)
        return docs


class RecursiveCharacterTextSplitter(TextSplitter):
    """Split on the coarsest separator present, recursing into oversized pieces."""

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.separators = list(separators) if separators is not None else list(DEFAULT_SEPARATORS)

    def _pick_separator(self, text: str) -> str:
        for sep in self.separators:
            if sep == "" or sep in text:
                return sep
        return self.separators[-1] if self.separators else ""

    def split_text(self, text: str) -> List[str]:
        self._check_sizes()
        separator = self._pick_separator(text)
        splits = text.split(separator) if separator else list(text)
        final_chunks: List[str] = []
        good_splits: List[str] = []
        for split in splits:
            # Single characters cannot be split further.
            if len(split) < self.chunk_size or not separator:
                good_splits.append(split)
                continue
            if good_splits:
                final_chunks.extend(self.merge_splits(good_splits, separator))
                good_splits = []
            final_chunks.extend(self.split_text(split))
        if good_splits:
            final_chunks.extend(self.merge_splits(good_splits, separator))
        return final_chunks
