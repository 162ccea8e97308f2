#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

"""Greedy decoding for stateless and stateful zenz engines.

Every iterative driver (sync or async, stateless or stateful) pushes the same
GreedyDecoder state machine; only the way the engine is invoked differs.

Termination is checked after each successful step, in this order:
    1. next token == EOS_TOKEN_ID  -> stop, the EOS token is not appended
    2. len(sequence) >= MAX_SEQ_LENGTH -> stop with what has been accumulated
Otherwise the token is appended, and reaching MAX_SEQ_LENGTH with it ends the
generation without another engine call.
A failed step (input allocation or engine error) ends the generation with an
empty result; steps are never retried.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional

import numpy as np

from .logits import argmax_logits, argmax_logits_row

logger = logging.getLogger(__name__)

EOS_TOKEN_ID = 3
MAX_SEQ_LENGTH = 128
STATELESS_WINDOW = 16
PAD_TOKEN = "[PAD]"


class FinishReason(Enum):
    EOS = "eos"
    LENGTH = "length_cutoff"
    FAILURE = "failure"


@dataclass(frozen=True)
class GenerationResult:
    text: str
    token_ids: List[int] = field(default_factory=list)
    finish_reason: FinishReason = FinishReason.FAILURE
    steps: int = 0

    @property
    def ok(self) -> bool:
        return self.finish_reason is not FinishReason.FAILURE


class StepInputs(NamedTuple):
    input_ids: np.ndarray
    attention_mask: Optional[np.ndarray]


def strip_pad(text: str) -> str:
    # Removing one marker can join its neighbours into a new one
    while PAD_TOKEN in text:
        text = text.replace(PAD_TOKEN, "")
    return text


def _allocate(shape, dtype, fill=0):
    """np.full that reports allocation failures as None."""
    try:
        return np.full(shape, fill, dtype=dtype)
    except (MemoryError, ValueError) as e:
        logger.warning("Failed to allocate input array %s: %s", shape, e)
        return None


class GreedyDecoder:
    """Token-by-token greedy decoding state machine.

    The decoder never talks to an engine itself: drivers ask it for the next
    step's inputs, run the engine, and feed the resulting logits back.

    Stateless engines receive the whole sequence on every step. Stateful
    engines receive the prompt on the first step and afterwards only the
    newest token, since their session already holds the earlier positions;
    the attention mask always spans the full sequence.
    """

    def __init__(self, text: str, tokenizer, stateful: bool = False,
                 max_length: int = MAX_SEQ_LENGTH, eos_token_id: int = EOS_TOKEN_ID,
                 tag: str = "[Greedy]"):
        self.tokenizer = tokenizer
        self.stateful = stateful
        self.max_length = max_length
        self.eos_token_id = eos_token_id
        self.tag = tag
        self.steps = 0
        self.finish_reason: Optional[FinishReason] = None
        self._sent = 0
        self._consumed = 0

        self.token_ids = [int(t) for t in tokenizer.encode(text)]
        logger.debug("%s inputIDs: %s %s", tag, text, self.token_ids)
        if not self.token_ids:
            self.fail("Empty prompt encoding")

    @property
    def done(self) -> bool:
        return self.finish_reason is not None

    def fail(self, message: str, error: Optional[BaseException] = None):
        if error is not None:
            logger.warning("%s %s at step %d: %s", self.tag, message, self.steps, error)
        else:
            logger.warning("%s %s at step %d", self.tag, message, self.steps)
        self.finish_reason = FinishReason.FAILURE

    def next_inputs(self) -> Optional[StepInputs]:
        """Build the model inputs for the next step, or None if allocation failed."""
        if self.stateful and self._consumed:
            new_tokens = self.token_ids[self._consumed:]
        else:
            new_tokens = self.token_ids

        input_ids = _allocate((1, len(new_tokens)), np.int32)
        attention_mask = None
        if self.stateful:
            attention_mask = _allocate((1, len(self.token_ids)), np.int32, fill=1)
        if input_ids is None or (self.stateful and attention_mask is None):
            self.fail("Failed to allocate input arrays")
            return None

        input_ids[0, :] = new_tokens
        self._sent = len(new_tokens)
        self._consumed = len(self.token_ids)
        return StepInputs(input_ids, attention_mask)

    def advance(self, logits):
        """Consume one step's logits and update the state."""
        shape = np.shape(logits)
        time_size = shape[1] if len(shape) == 3 else 0
        # Stateful engines usually emit only the newest position (time index 0).
        last_time_index = min(self._sent, time_size) - 1

        next_token_id = argmax_logits_row(logits, 0, last_time_index)
        self.steps += 1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s step seqLen=%d, nextTokenID=%d, tokenText=%s",
                self.tag, len(self.token_ids), next_token_id,
                self.tokenizer.decode([next_token_id]),
            )

        if next_token_id == self.eos_token_id:
            self.finish_reason = FinishReason.EOS
        elif len(self.token_ids) >= self.max_length:
            self.finish_reason = FinishReason.LENGTH
        else:
            self.token_ids.append(next_token_id)
            if len(self.token_ids) >= self.max_length:
                self.finish_reason = FinishReason.LENGTH

    def result(self) -> GenerationResult:
        if self.finish_reason is FinishReason.FAILURE:
            return GenerationResult("", list(self.token_ids), FinishReason.FAILURE, self.steps)
        text = strip_pad(self.tokenizer.decode(self.token_ids))
        return GenerationResult(text, list(self.token_ids), self.finish_reason, self.steps)


# -- stateless iterative generation ------------------------------------------

def generate(text: str, model, tokenizer, tag: str = "[Stateless Greedy][Sync]",
             max_length: int = MAX_SEQ_LENGTH) -> GenerationResult:
    decoder = GreedyDecoder(text, tokenizer, max_length=max_length, tag=tag)
    while not decoder.done:
        inputs = decoder.next_inputs()
        if inputs is None:
            break
        try:
            logits = model.logits(inputs.input_ids)
        except Exception as e:
            decoder.fail("Prediction failed", e)
            break
        decoder.advance(logits)
    return decoder.result()


async def generate_async(text: str, model, tokenizer, tag: str = "[Stateless Greedy][Async]",
                         max_length: int = MAX_SEQ_LENGTH) -> GenerationResult:
    decoder = GreedyDecoder(text, tokenizer, max_length=max_length, tag=tag)
    while not decoder.done:
        inputs = decoder.next_inputs()
        if inputs is None:
            break
        try:
            logits = await model.logits_async(inputs.input_ids)
        except Exception as e:
            decoder.fail("Prediction failed", e)
            break
        decoder.advance(logits)
    return decoder.result()


def greedy_predict(text: str, model, tokenizer, **kwargs) -> str:
    return generate(text, model, tokenizer, **kwargs).text


async def greedy_predict_async(text: str, model, tokenizer, **kwargs) -> str:
    return (await generate_async(text, model, tokenizer, **kwargs)).text


# -- stateful iterative generation -------------------------------------------

def _new_session(model, decoder: GreedyDecoder):
    try:
        return model.make_state()
    except Exception as e:
        decoder.fail("Failed to create decoding state", e)
        return None


def generate_stateful(text: str, model, tokenizer, state=None, tag: str = "[Stateful Greedy]",
                      max_length: int = MAX_SEQ_LENGTH) -> GenerationResult:
    """Greedy generation through a stateful engine and its KV cache.

    A fresh state is created per call unless one is passed in; the state is
    owned by this generation and must not be reused afterwards.
    """
    decoder = GreedyDecoder(text, tokenizer, stateful=True, max_length=max_length, tag=tag)
    if not decoder.done and state is None:
        state = _new_session(model, decoder)
    while not decoder.done:
        inputs = decoder.next_inputs()
        if inputs is None:
            break
        try:
            logits = model.logits(inputs.input_ids, inputs.attention_mask, state)
        except Exception as e:
            decoder.fail("Prediction failed", e)
            break
        decoder.advance(logits)
    return decoder.result()


async def generate_stateful_async(text: str, model, tokenizer, state=None,
                                  tag: str = "[Stateful Greedy][Async]",
                                  max_length: int = MAX_SEQ_LENGTH) -> GenerationResult:
    decoder = GreedyDecoder(text, tokenizer, stateful=True, max_length=max_length, tag=tag)
    if not decoder.done and state is None:
        state = _new_session(model, decoder)
    while not decoder.done:
        inputs = decoder.next_inputs()
        if inputs is None:
            break
        try:
            logits = await model.logits_async(inputs.input_ids, inputs.attention_mask, state)
        except Exception as e:
            decoder.fail("Prediction failed", e)
            break
        decoder.advance(logits)
    return decoder.result()


def greedy_predict_stateful(text: str, model, tokenizer, **kwargs) -> str:
    return generate_stateful(text, model, tokenizer, **kwargs).text


async def greedy_predict_stateful_async(text: str, model, tokenizer, **kwargs) -> str:
    return (await generate_stateful_async(text, model, tokenizer, **kwargs)).text


# -- single-shot prediction --------------------------------------------------

def _stateless_window(input_ids: List[int], tag: str):
    """Fixed [1, STATELESS_WINDOW] float32 input; tokens past the window are dropped."""
    window = _allocate((1, STATELESS_WINDOW), np.float32)
    if window is None:
        return None
    if len(input_ids) > STATELESS_WINDOW:
        logger.warning("%s Prompt has %d tokens, keeping the first %d",
                       tag, len(input_ids), STATELESS_WINDOW)
    kept = input_ids[:STATELESS_WINDOW]
    window[0, :len(kept)] = kept
    return window


def _decode_rows(logits, tokenizer, tag: str) -> List[str]:
    predicted_token_ids = argmax_logits(logits)
    logger.debug("%s predictedTokenIDs: %s", tag, predicted_token_ids)
    return [strip_pad(tokenizer.decode(row)) for row in predicted_token_ids]


def predict(text: str, model, tokenizer, tag: str = "[Stateless Predict][Sync]") -> List[str]:
    """Predict the continuation at every position of a fixed 16-token window."""
    input_ids = tokenizer.encode(text)
    logger.debug("%s inputIDs: %s %s", tag, text, input_ids)
    window = _stateless_window(input_ids, tag)
    if window is None:
        return []
    try:
        logits = model.logits(window)
    except Exception as e:
        logger.warning("%s Prediction failed: %s", tag, e)
        return []
    return _decode_rows(logits, tokenizer, tag)


async def predict_async(text: str, model, tokenizer,
                        tag: str = "[Stateless Predict][Async]") -> List[str]:
    input_ids = tokenizer.encode(text)
    logger.debug("%s inputIDs: %s %s", tag, text, input_ids)
    window = _stateless_window(input_ids, tag)
    if window is None:
        return []
    try:
        logits = await model.logits_async(window)
    except Exception as e:
        logger.warning("%s Prediction failed: %s", tag, e)
        return []
    return _decode_rows(logits, tokenizer, tag)


def _stateful_prompt_inputs(input_ids: List[int]) -> Optional[StepInputs]:
    ids = _allocate((1, len(input_ids)), np.int32)
    mask = _allocate((1, len(input_ids)), np.int32, fill=1)
    if ids is None or mask is None:
        return None
    ids[0, :] = input_ids
    return StepInputs(ids, mask)


def predict_stateful(text: str, model, tokenizer, tag: str = "[Stateful Predict]") -> List[str]:
    """Single stateful prediction over the whole prompt with a fresh state."""
    input_ids = tokenizer.encode(text)
    logger.debug("%s inputIDs: %s %s", tag, text, input_ids)
    inputs = _stateful_prompt_inputs(input_ids)
    if inputs is None:
        return []
    try:
        state = model.make_state()
        logits = model.logits(inputs.input_ids, inputs.attention_mask, state)
    except Exception as e:
        logger.warning("%s Prediction failed: %s", tag, e)
        return []
    return _decode_rows(logits, tokenizer, tag)


async def predict_stateful_async(text: str, model, tokenizer,
                                 tag: str = "[Stateful Predict][Async]") -> List[str]:
    input_ids = tokenizer.encode(text)
    logger.debug("%s inputIDs: %s %s", tag, text, input_ids)
    inputs = _stateful_prompt_inputs(input_ids)
    if inputs is None:
        return []
    try:
        state = model.make_state()
        logits = await model.logits_async(inputs.input_ids, inputs.attention_mask, state)
    except Exception as e:
        logger.warning("%s Prediction failed: %s", tag, e)
        return []
    return _decode_rows(logits, tokenizer, tag)


# -- warmup ------------------------------------------------------------------

def _warmup_inputs(tag: str) -> Optional[StepInputs]:
    inputs = _stateful_prompt_inputs([0])
    if inputs is None:
        logger.warning("%s Skipped: failed to allocate input arrays.", tag)
    return inputs


def warmup_stateful_model(model, tag: str = "[Stateful Warmup]") -> bool:
    """One throwaway single-token prediction so plan build cost is paid up front."""
    inputs = _warmup_inputs(tag)
    if inputs is None:
        return False
    try:
        model.logits(inputs.input_ids, inputs.attention_mask, model.make_state())
    except Exception as e:
        logger.warning("%s Failed: %s", tag, e)
        return False
    return True


async def warmup_stateful_model_async(model, tag: str = "[Stateful Warmup]") -> bool:
    inputs = _warmup_inputs(tag)
    if inputs is None:
        return False
    try:
        await model.logits_async(inputs.input_ids, inputs.attention_mask, model.make_state())
    except Exception as e:
        logger.warning("%s Failed: %s", tag, e)
        return False
    return True
