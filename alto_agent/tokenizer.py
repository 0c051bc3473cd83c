"""Token estimation for endpoints that do not report usage."""

import json
import re
from typing import Iterable, Optional

import tiktoken

from .logger import get_logger

_log = get_logger(__name__)

_encoder_cache = {}
_CJK = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")


def _get_encoder(model: Optional[str]):
    """Get tiktoken encoder for model, with caching. None if it cannot be loaded."""
    key = model or ""
    if key in _encoder_cache:
        return _encoder_cache[key]

    try:
        try:
            enc = tiktoken.encoding_for_model(model) if model else tiktoken.get_encoding("cl100k_base")
        except KeyError:
            # Local model names are unknown to tiktoken; cl100k_base is close enough.
            enc = tiktoken.get_encoding("cl100k_base")
    except Exception as e:
        # Encoding files are fetched on first use; offline machines get the heuristic.
        _log.debug("tiktoken encoder unavailable: %s", e)
        enc = None

    _encoder_cache[key] = enc
    return enc


def estimate_tokens(text: str, model: Optional[str] = None) -> int:
    if not text:
        return 0
    enc = _get_encoder(model)
    if enc is not None:
        return len(enc.encode(text, disallowed_special=()))
    return _heuristic_estimate(text)


def _heuristic_estimate(text: str) -> int:
    """Heuristic token estimation for mixed CJK/English text."""
    cjk_chars = len(_CJK.findall(text))
    non_cjk = _CJK.sub(' ', text)
    # ~4 chars per English token, ~1.5 chars per CJK token
    return max(1, int(len(non_cjk) / 4 + cjk_chars / 1.5))


def estimate_message_tokens(msg: dict, model: Optional[str] = None) -> int:
    """Estimate tokens for a conversation message."""
    tokens = 4  # per-message overhead
    tokens += estimate_tokens(msg.get("content") or "", model)
    if msg.get("tool_calls"):
        tokens += estimate_tokens(json.dumps(msg["tool_calls"]), model)
    return tokens


def estimate_history_tokens(messages: Iterable[dict], model: Optional[str] = None) -> int:
    return sum(estimate_message_tokens(msg, model) for msg in messages)
