#  Copyright (c) 2025, Anemll  All rights reserved.
#
#  Use of this source code is governed by a MIT license that can be
#  found in the LICENSE.txt file or at https://opensource.org/license/mit

import numpy as np

from conftest import PAD_ID, ScriptedStatefulModel, ScriptedStatelessModel, run
from zenzbench.generation import (
    MAX_SEQ_LENGTH,
    PAD_TOKEN,
    STATELESS_WINDOW,
    FinishReason,
    generate,
    generate_async,
    generate_stateful,
    generate_stateful_async,
    greedy_predict,
    greedy_predict_async,
    greedy_predict_stateful,
    greedy_predict_stateful_async,
    predict,
    predict_async,
    predict_stateful,
    predict_stateful_async,
    strip_pad,
    warmup_stateful_model,
    warmup_stateful_model_async,
)


def test_eos_on_first_step_returns_prompt(tokenizer):
    model = ScriptedStatelessModel([])
    result = generate("abc", model, tokenizer)
    assert result.text == "abc"
    assert result.finish_reason is FinishReason.EOS
    assert result.steps == 1
    assert result.token_ids == tokenizer.encode("abc")


def test_stateless_resends_whole_sequence(tokenizer):
    x, y = tokenizer.encode("xy")
    model = ScriptedStatelessModel([x, y])
    result = generate("abc", model, tokenizer)
    assert result.text == "abcxy"
    assert result.steps == 3
    assert [call.shape for call in model.calls] == [(1, 3), (1, 4), (1, 5)]
    assert all(call.dtype == np.int32 for call in model.calls)
    assert model.calls[-1][0].tolist() == tokenizer.encode("abcxy")


def test_length_cutoff_bounds_steps(tokenizer):
    prompt = "a" * (MAX_SEQ_LENGTH - 2)
    b = tokenizer.encode("b")[0]
    model = ScriptedStatelessModel([b] * 200)
    result = generate(prompt, model, tokenizer)
    assert result.finish_reason is FinishReason.LENGTH
    assert len(result.token_ids) == MAX_SEQ_LENGTH
    assert result.steps == MAX_SEQ_LENGTH - len(prompt)
    assert result.text == prompt + "bb"


def test_pad_is_stripped_from_output(tokenizer):
    x = tokenizer.encode("x")[0]
    model = ScriptedStatelessModel([PAD_ID, x])
    result = generate("abc", model, tokenizer)
    assert PAD_ID in result.token_ids
    assert result.text == "abcx"


def test_pad_removal_does_not_leave_a_rebuilt_marker(tokenizer):
    d, bracket = tokenizer.encode("D]")
    model = ScriptedStatelessModel([PAD_ID, d, bracket])
    result = generate("[PA", model, tokenizer)
    assert PAD_TOKEN not in result.text
    assert strip_pad("[PA[PAD]D]x") == "x"


def test_reaching_max_length_stops_without_extra_call(tokenizer):
    b = tokenizer.encode("b")[0]
    model = ScriptedStatelessModel([b] * 5)
    result = generate("a" * (MAX_SEQ_LENGTH - 1), model, tokenizer)
    assert result.finish_reason is FinishReason.LENGTH
    assert len(result.token_ids) == MAX_SEQ_LENGTH
    assert len(model.calls) == 1


def test_oversized_prompt_is_not_extended(tokenizer):
    model = ScriptedStatelessModel([tokenizer.encode("b")[0]])
    prompt = "a" * (MAX_SEQ_LENGTH + 2)
    result = generate(prompt, model, tokenizer)
    assert result.finish_reason is FinishReason.LENGTH
    assert result.text == prompt
    assert len(model.calls) == 1


def test_inference_failure_yields_empty_text(tokenizer):
    x = tokenizer.encode("x")[0]
    model = ScriptedStatelessModel([x, x, x], fail_at=1)
    result = generate("abc", model, tokenizer)
    assert result.text == ""
    assert result.finish_reason is FinishReason.FAILURE
    assert not result.ok
    assert len(model.calls) == 2


def test_empty_prompt_is_a_failure(tokenizer):
    model = ScriptedStatelessModel([])
    result = generate("", model, tokenizer)
    assert result.finish_reason is FinishReason.FAILURE
    assert model.calls == []

    stateful = ScriptedStatefulModel([])
    assert generate_stateful("", stateful, tokenizer).finish_reason is FinishReason.FAILURE
    assert stateful.states == []


def test_stateful_sends_prompt_then_newest_token(tokenizer):
    x, y = tokenizer.encode("xy")
    model = ScriptedStatefulModel([x, y])
    result = generate_stateful("abc", model, tokenizer)

    assert result.text == "abcxy"
    assert result.finish_reason is FinishReason.EOS
    assert len(model.states) == 1
    ids = [call[0].tolist() for call in model.calls]
    masks = [call[1] for call in model.calls]
    assert ids == [[tokenizer.encode("abc")], [[x]], [[y]]]
    assert [m.shape for m in masks] == [(1, 3), (1, 4), (1, 5)]
    assert all(m.all() for m in masks)
    assert all(call[2] is model.states[0] for call in model.calls)


def test_stateful_uses_given_state(tokenizer):
    model = ScriptedStatefulModel([])
    state = object()
    generate_stateful("abc", model, tokenizer, state=state)
    assert model.states == []
    assert model.calls[0][2] is state


def test_stateful_session_failure(tokenizer):
    model = ScriptedStatefulModel([], fail_make_state=True)
    result = generate_stateful("abc", model, tokenizer)
    assert result.finish_reason is FinishReason.FAILURE
    assert model.calls == []

    x = tokenizer.encode("x")[0]
    model = ScriptedStatefulModel([x, x], fail_at=1)
    assert generate_stateful("abc", model, tokenizer).text == ""


def test_async_drivers_match_sync(tokenizer):
    x = tokenizer.encode("x")[0]
    assert run(generate_async("ab", ScriptedStatelessModel([x]), tokenizer)).text == "abx"
    assert run(generate_stateful_async("ab", ScriptedStatefulModel([x]), tokenizer)).text == "abx"
    assert greedy_predict("ab", ScriptedStatelessModel([x]), tokenizer) == "abx"
    assert greedy_predict_stateful("ab", ScriptedStatefulModel([x]), tokenizer) == "abx"
    assert run(greedy_predict_async("ab", ScriptedStatelessModel([x]), tokenizer)) == "abx"
    assert run(greedy_predict_stateful_async("ab", ScriptedStatefulModel([x]), tokenizer)) == "abx"


def test_predict_uses_fixed_float_window(tokenizer):
    z = tokenizer.encode("z")[0]
    prompt = "abcdefghijklmnopqrst"
    model = ScriptedStatelessModel([z])
    outputs = predict(prompt, model, tokenizer)

    window = model.calls[0]
    assert window.shape == (1, STATELESS_WINDOW)
    assert window.dtype == np.float32
    assert window[0].astype(int).tolist() == tokenizer.encode(prompt)[:STATELESS_WINDOW]
    # Every other position predicts PAD, which is stripped
    assert outputs == ["z"]


def test_predict_short_prompt_is_zero_padded(tokenizer):
    model = ScriptedStatelessModel([])
    run(predict_async("ab", model, tokenizer))
    window = model.calls[0]
    assert window[0, :2].astype(int).tolist() == tokenizer.encode("ab")
    assert not window[0, 2:].any()


def test_predict_failure_returns_empty_list(tokenizer):
    assert predict("ab", ScriptedStatelessModel([], fail_at=0), tokenizer) == []
    assert predict_stateful("ab", ScriptedStatefulModel([], fail_at=0), tokenizer) == []
    assert run(predict_stateful_async("ab", ScriptedStatefulModel([], fail_make_state=True), tokenizer)) == []


def test_predict_stateful_sends_whole_prompt(tokenizer):
    x = tokenizer.encode("x")[0]
    model = ScriptedStatefulModel([x])
    assert predict_stateful("abc", model, tokenizer) == ["x"]
    ids, mask, _ = model.calls[0]
    assert ids.dtype == np.int32
    assert ids.tolist() == [tokenizer.encode("abc")]
    assert mask.tolist() == [[1, 1, 1]]


def test_warmup_runs_single_token_on_fresh_state():
    model = ScriptedStatefulModel([])
    assert warmup_stateful_model(model) is True
    ids, mask, state = model.calls[0]
    assert ids.tolist() == [[0]]
    assert mask.tolist() == [[1]]
    assert state is model.states[0]


def test_warmup_failure_is_not_raised():
    assert warmup_stateful_model(ScriptedStatefulModel([], fail_at=0)) is False
    assert run(warmup_stateful_model_async(ScriptedStatefulModel([], fail_make_state=True))) is False
