#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

import asyncio

import numpy as np
import pytest

VOCAB_SIZE = 64
PAD_ID = 0
EOS_ID = 3


class FakeTokenizer:
    """Character-level tokenizer: ids 0..3 are special, characters start at 4."""

    def __init__(self):
        self.id_to_token = {0: "[PAD]", 1: "[UNK]", 2: "<s>", 3: "</s>"}
        self.token_to_id = {v: k for k, v in self.id_to_token.items()}

    def _id(self, ch):
        if ch not in self.token_to_id:
            new_id = len(self.id_to_token)
            assert new_id < VOCAB_SIZE, "fake vocabulary exhausted"
            self.id_to_token[new_id] = ch
            self.token_to_id[ch] = new_id
        return self.token_to_id[ch]

    def encode(self, text):
        return [self._id(ch) for ch in text]

    def decode(self, ids):
        return "".join(self.id_to_token.get(int(i), "") for i in ids if int(i) != EOS_ID)


def one_hot_logits(token_ids, vocab_size=VOCAB_SIZE, dtype=np.float32):
    """logits[1, len(token_ids), vocab] with the given arg-max at each position."""
    logits = np.zeros((1, len(token_ids), vocab_size), dtype=dtype)
    for t, token_id in enumerate(token_ids):
        logits[0, t, token_id] = 1.0
    return logits


class ScriptedStatelessModel:
    """Emits the scripted token ids in order, then EOS forever."""

    def __init__(self, script, fail_at=None):
        self.script = list(script)
        self.fail_at = fail_at
        self.calls = []

    def _next(self):
        step = len(self.calls) - 1
        return self.script[step] if step < len(self.script) else EOS_ID

    def logits(self, input_ids):
        self.calls.append(np.array(input_ids))
        if self.fail_at is not None and len(self.calls) - 1 == self.fail_at:
            raise RuntimeError("prediction failed")
        n = np.shape(input_ids)[1]
        # Only the last position carries the scripted token
        return one_hot_logits([PAD_ID] * (n - 1) + [self._next()])

    async def logits_async(self, input_ids):
        return self.logits(input_ids)


class ScriptedStatefulModel:
    """Stateful engine returning scores for the newest position only."""

    def __init__(self, script, fail_at=None, fail_make_state=False):
        self.script = list(script)
        self.fail_at = fail_at
        self.fail_make_state = fail_make_state
        self.calls = []
        self.states = []

    def make_state(self):
        if self.fail_make_state:
            raise RuntimeError("make_state failed")
        state = object()
        self.states.append(state)
        return state

    def logits(self, input_ids, attention_mask, state):
        self.calls.append((np.array(input_ids), np.array(attention_mask), state))
        if self.fail_at is not None and len(self.calls) - 1 == self.fail_at:
            raise RuntimeError("prediction failed")
        step = len(self.calls) - 1
        token = self.script[step] if step < len(self.script) else EOS_ID
        return one_hot_logits([token])

    async def logits_async(self, input_ids, attention_mask, state):
        return self.logits(input_ids, attention_mask, state)


class FakeClock:
    """Each call advances by the next scripted increment (default 1.0 s)."""

    def __init__(self, increments=None):
        self.now = 0.0
        self.increments = list(increments or [])

    def __call__(self):
        value = self.now
        self.now += self.increments.pop(0) if self.increments else 1.0
        return value


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def tokenizer():
    return FakeTokenizer()
