"""
Byte-pair encoding tokenizer for RoBERTa-family style models.

Reads a GPT-2 style ``vocab.json`` (token -> id) and ``merges.txt``
(version header followed by one ranked ``left right`` pair per line).
Words after the first carry the ``Ġ`` word-boundary marker.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import NamedTuple

from tonematch.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BOS_TOKEN = "<s>"
EOS_TOKEN = "</s>"
PAD_TOKEN = "<pad>"
UNK_TOKEN = "<unk>"
WORD_BOUNDARY = "Ġ"

DEFAULT_BOS_ID = 0
DEFAULT_PAD_ID = 1
DEFAULT_EOS_ID = 2
DEFAULT_UNK_ID = 3

MAX_BPE_CACHE_SIZE = 50_000


class EncodedText(NamedTuple):
    input_ids: list[int]
    attention_mask: list[int]


def load_vocab(path: Path) -> dict[str, int]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load vocabulary from {path}: {e}",
            error_code="TOKENIZER_VOCAB_INVALID",
        ) from e
    if not isinstance(data, dict) or not all(
        isinstance(v, int) for v in data.values()
    ):
        raise ConfigurationError(
            f"Vocabulary at {path} must map token strings to integer ids",
            error_code="TOKENIZER_VOCAB_INVALID",
        )
    return data


def load_merges(path: Path) -> dict[tuple[str, str], int]:
    """Parse merge rules; rank is the rule's position after the header."""
    try:
        lines = path.read_text(encoding="utf-8").split("\n")
    except OSError as e:
        raise ConfigurationError(
            f"Failed to load merges from {path}: {e}",
            error_code="TOKENIZER_MERGES_INVALID",
        ) from e

    ranks: dict[tuple[str, str], int] = {}
    for line_no, raw in enumerate(lines[1:], start=2):
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 2:
            raise ConfigurationError(
                f"Malformed merge rule at {path}:{line_no}",
                error_code="TOKENIZER_MERGES_INVALID",
            )
        ranks.setdefault((parts[0], parts[1]), len(ranks))
    return ranks


class BPETokenizer:
    """
    Greedy BPE tokenizer.

    The vocabulary and merge tables are immutable after construction; the
    per-word memo only ever stores deterministic results, so one instance
    can be shared by concurrent callers.
    """

    def __init__(
        self, vocab: dict[str, int], merges: dict[tuple[str, str], int]
    ) -> None:
        self._vocab = dict(vocab)
        self._merges = dict(merges)
        self._inverse = {idx: token for token, idx in self._vocab.items()}
        self._cache: dict[str, tuple[str, ...]] = {}

        self.bos_id = self._vocab.get(BOS_TOKEN, DEFAULT_BOS_ID)
        self.eos_id = self._vocab.get(EOS_TOKEN, DEFAULT_EOS_ID)
        self.pad_id = self._vocab.get(PAD_TOKEN, DEFAULT_PAD_ID)
        self.unk_id = self._vocab.get(UNK_TOKEN, DEFAULT_UNK_ID)

    @classmethod
    def from_files(cls, vocab_path: Path, merges_path: Path) -> BPETokenizer:
        vocab = load_vocab(vocab_path)
        merges = load_merges(merges_path)
        logger.info(
            "Loaded BPE tokenizer: %d tokens, %d merges", len(vocab), len(merges)
        )
        return cls(vocab, merges)

    @property
    def vocab_size(self) -> int:
        return len(self._vocab)

    def _bpe(self, word: str) -> tuple[str, ...]:
        cached = self._cache.get(word)
        if cached is not None:
            return cached

        symbols = list(word)
        while len(symbols) > 1:
            best_rank = None
            best_pair = None
            for pair in zip(symbols, symbols[1:]):
                rank = self._merges.get(pair)
                if rank is not None and (best_rank is None or rank < best_rank):
                    best_rank = rank
                    best_pair = pair
            if best_pair is None:
                break

            first, second = best_pair
            merged: list[str] = []
            i = 0
            while i < len(symbols):
                if (
                    i < len(symbols) - 1
                    and symbols[i] == first
                    and symbols[i + 1] == second
                ):
                    merged.append(first + second)
                    i += 2
                else:
                    merged.append(symbols[i])
                    i += 1
            symbols = merged

        result = tuple(symbols)
        if len(self._cache) < MAX_BPE_CACHE_SIZE:
            self._cache[word] = result
        return result

    def tokenize(self, text: str) -> list[str]:
        """Split on whitespace and apply BPE to each word."""
        pieces: list[str] = []
        for i, word in enumerate(text.split()):
            prefix = "" if i == 0 else WORD_BOUNDARY
            pieces.extend(self._bpe(prefix + word))
        return pieces

    def encode(self, text: str, max_length: int = 128) -> EncodedText:
        """
        Encode text into a fixed-length id window.

        BOS is prepended, content is truncated so EOS always fits, then the
        sequence is padded to ``max_length`` with PAD ids and mask bit 0.

        Empty or whitespace-only text has no words, so it encodes as just
        ``[BOS, EOS]``; no UNK is emitted for the missing word.
        """
        if max_length < 2:
            raise ValueError("max_length must leave room for BOS and EOS")

        ids = [self.bos_id]
        for piece in self.tokenize(text):
            if len(ids) >= max_length - 1:
                break
            ids.append(self._vocab.get(piece, self.unk_id))
        ids.append(self.eos_id)

        mask = [1] * len(ids)
        padding = max_length - len(ids)
        ids.extend([self.pad_id] * padding)
        mask.extend([0] * padding)
        return EncodedText(ids, mask)

    def decode(self, ids: list[int]) -> str:
        special = {self.bos_id, self.eos_id, self.pad_id}
        tokens = [
            self._inverse[i] for i in ids if i not in special and i in self._inverse
        ]
        return "".join(tokens).replace(WORD_BOUNDARY, " ").strip()
