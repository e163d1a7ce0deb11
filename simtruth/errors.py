from __future__ import annotations


class LogicError(RuntimeError):
    r"""
    Fatal violation of the causal-order contract with the event stream producer.

    Raised when a resolved parent has no truth-index entry, or when the
    finalization pass meets a retained particle that cannot be associated with
    its truth record. Processing of the current event is aborted; nothing is
    retried.
    """
