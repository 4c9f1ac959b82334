"""
Light convenience wrappers around the adblock rule-matching engine.

Filter syntax is interpreted entirely by the engine; rule text is passed
through without validation.
"""

from __future__ import annotations
import logging
from typing import Iterable

import adblock

logger = logging.getLogger(__name__)


def _build_engine(rules: Iterable[str]) -> adblock.Engine:
    # debug=True keeps each filter's original text, so match results report
    # the rule that fired. optimize=False stops the engine from merging
    # filters, which would blur that provenance.
    filter_set = adblock.FilterSet(debug=True)
    rules = [rule for rule in rules if rule.strip()]
    if rules:
        filter_set.add_filters(rules)
    return adblock.Engine(filter_set=filter_set, optimize=False)


def compile_rules(rules: Iterable[str]) -> adblock.Engine:
    """Compile filter-syntax lines into a matching engine.

    An empty rule set yields an engine that blocks nothing.
    """
    rules = list(rules)
    logger.info("Compiling %d rules", len(rules))
    return _build_engine(rules)


def serialize_engine(engine: adblock.Engine) -> bytes:
    """Serialize a compiled engine into a portable byte buffer."""
    buffer = bytes(engine.serialize())
    logger.info("Serialized rules into buffer of length %d", len(buffer))
    return buffer


def serialize_rules(rules: Iterable[str]) -> bytes:
    """Compile and serialize ``rules`` in one step."""
    return serialize_engine(compile_rules(rules))


def deserialize_engine(buffer: bytes) -> adblock.Engine:
    """Recreate an engine from a buffer produced by ``serialize_engine``."""
    engine = _build_engine([])
    engine.deserialize(bytes(buffer))
    return engine
