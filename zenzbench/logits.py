#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Arg-max extraction from raw logits[batch, time, vocab] buffers.

Out-of-range coordinates never raise: the reader logs a diagnostic and
returns token id 0 so a single malformed tensor cannot abort a sweep.
"""

import logging
from typing import List

import numpy as np

logger = logging.getLogger(__name__)

# Element types scanned directly over the flat buffer.
_FAST_DTYPES = (np.dtype(np.float32), np.dtype(np.float16))


def _shape_of(logits):
    shape = getattr(logits, "shape", None)
    if shape is None:
        shape = np.shape(logits)
    return tuple(int(dim) for dim in shape)


def argmax_logits_row(logits, batch: int, time: int) -> int:
    """Return the vocabulary index with the highest score at (batch, time).

    Args:
        logits: 3-D score tensor shaped [batch, time, vocab]
        batch: Batch row
        time: Sequence position

    Returns:
        int: Index of the first maximal score, or 0 on invalid input
    """
    shape = _shape_of(logits)
    if len(shape) != 3:
        logger.warning("[argmax_logits_row] Expected 3-D logits, got shape=%s", shape)
        return 0

    batch_size, seq_len, vocab_size = shape

    # 1) batch / time range check
    if not (0 <= batch < batch_size and 0 <= time < seq_len):
        logger.warning(
            "[argmax_logits_row] Invalid indices: batch=%s, time=%s, shape=%s",
            batch, time, shape,
        )
        return 0

    flat = np.ravel(logits)
    base = (batch * seq_len + time) * vocab_size
    total_count = flat.size

    # 2) check against the real buffer size as well
    if base < 0 or vocab_size < 1 or base + vocab_size > total_count:
        logger.warning(
            "[argmax_logits_row] Out-of-bounds: base=%s, vocab_size=%s, total_count=%s",
            base, vocab_size, total_count,
        )
        return 0

    if flat.dtype in _FAST_DTYPES:
        row = flat[base:base + vocab_size].astype(np.float32)
        # NaN never beats a real score; np.argmax keeps the first maximum.
        row = np.where(np.isnan(row), -np.inf, row)
        return int(np.argmax(row))

    # Unsupported width: slow per-element access, strict '>' keeps the first maximum.
    best_id = 0
    best_score = None
    for v in range(vocab_size):
        score = float(flat[base + v])
        if score != score:
            continue
        if best_score is None or score > best_score:
            best_score = score
            best_id = v
    return best_id


def argmax_logits(logits) -> List[List[int]]:
    """Arg-max for every (batch, time) coordinate of a logits tensor."""
    shape = _shape_of(logits)
    if len(shape) != 3:
        logger.warning("[argmax_logits] Expected 3-D logits, got shape=%s", shape)
        return []
    predicted = []
    for batch_id in range(shape[0]):
        predicted.append([argmax_logits_row(logits, batch_id, t) for t in range(shape[1])])
    return predicted
