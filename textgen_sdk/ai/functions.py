# textgen_sdk/ai/functions.py
# SPDX-License-Identifier: Apache-2.0
"""
Inline function-call detection and execution.

Generated text may ask for a caller-registered function with a marker:

    Function Call: get_weather({"city": "Paris"})
    Action: lookup("tea")
    Action: now()

The prefix is case-insensitive; the name must be one of the declared
functions; the payload between the parentheses is JSON (or empty).

For every match the executor is called with the parsed arguments, its return
value is stringified, and a FunctionExec record is appended to the matching
result slot. Slot text is left as generated.

A payload that is not valid JSON, or fails the optional argument validator,
yields a ParsingError in the report; the call itself still succeeds.
Executor exceptions are the caller's and propagate.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple

import jsonschema

from textgen_sdk.ai.errors import ParsingError
from textgen_sdk.ai.tracing import FuncTrace
from textgen_sdk.ai.types import FunctionDeclaration, FunctionExec, TextResponse

LOG = logging.getLogger(__name__)

_MARKER = re.compile(
    r"(?:function\s*call|action)\s*:\s*(?P<name>[A-Za-z_][\w.\-]*)\s*\(",
    re.IGNORECASE,
)

_OPENERS = {"(": ")", "[": "]", "{": "}"}


@dataclass(frozen=True)
class FunctionCallMarker:
    name: str
    raw_args: str
    start: int
    end: int


def _scan_payload(text: str, start: int) -> Optional[int]:
    """
    Index of the ')' closing the call whose '(' sits at start - 1.

    Brackets inside JSON strings are ignored. None when unbalanced.
    """
    stack = [")"]
    in_string = False
    escaped = False
    i = start
    while i < len(text):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ")]}":
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i
        i += 1
    return None


def find_function_calls(text: str, names: Sequence[str]) -> Iterator[FunctionCallMarker]:
    """Yield well-delimited call markers for the given function names, in order."""
    wanted = set(names)
    pos = 0
    while True:
        m = _MARKER.search(text, pos)
        if m is None:
            return
        end = _scan_payload(text, m.end())
        if end is None:
            pos = m.end()
            continue
        if m.group("name") in wanted:
            yield FunctionCallMarker(
                name=m.group("name"),
                raw_args=text[m.end():end].strip(),
                start=m.start(),
                end=end + 1,
            )
        pos = end + 1


# =============================================================================
# Argument validation (optional collaborator)
# =============================================================================

class ArgsValidator(Protocol):
    """Returns an error message when args do not fit the declaration."""
    def validate(self, decl: FunctionDeclaration, args: Any) -> Optional[str]: ...


class JsonSchemaArgsValidator:
    """Validates arguments against FunctionDeclaration.input_schema using jsonschema."""

    def validate(self, decl: FunctionDeclaration, args: Any) -> Optional[str]:
        if not decl.input_schema:
            return None
        schema = dict(decl.input_schema)
        validator_cls = jsonschema.validators.validator_for(schema)
        validator = validator_cls(schema)
        err = jsonschema.exceptions.best_match(validator.iter_errors(args))
        if err is None:
            return None
        path = "/".join(str(p) for p in err.absolute_path)
        return f"{path}: {err.message}" if path else err.message


# =============================================================================
# Invoker
# =============================================================================

@dataclass
class InvocationReport:
    """What the invoker did to one response, for the trace."""
    calls: List[FuncTrace] = field(default_factory=list)
    parsing_error: Optional[ParsingError] = None


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


class FunctionInvoker:
    """Runs declared functions requested by generated text."""

    def __init__(self, *, validator: Optional[ArgsValidator] = None) -> None:
        self._validator = validator

    def _parse_args(self, decl: FunctionDeclaration, raw: str) -> Tuple[Any, Optional[ParsingError]]:
        if not raw:
            return None, None
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            return None, ParsingError(
                message=f"invalid arguments for function '{decl.name}': {e.msg}",
                value=raw,
            )
        if self._validator is not None:
            problem = self._validator.validate(decl, args)
            if problem:
                return None, ParsingError(
                    message=f"invalid arguments for function '{decl.name}': {problem}",
                    value=raw,
                )
        return args, None

    async def invoke(
        self,
        functions: Sequence[FunctionDeclaration],
        response: TextResponse,
    ) -> InvocationReport:
        """
        Scan every result slot, run matched executors, attach FunctionExec records.

        Only the first ParsingError is kept on the report.
        """
        report = InvocationReport()
        declared: Mapping[str, FunctionDeclaration] = {f.name: f for f in functions}
        if not declared:
            return report

        for slot in response.results:
            for marker in find_function_calls(slot.text or "", list(declared)):
                decl = declared[marker.name]
                args, err = self._parse_args(decl, marker.raw_args)
                if err is not None:
                    LOG.debug("function call parse failed: %s", err.message)
                    if report.parsing_error is None:
                        report.parsing_error = err
                    continue
                if decl.executor is None:
                    LOG.debug("function '%s' has no executor; skipping", decl.name)
                    continue

                value = decl.executor(args)
                if inspect.isawaitable(value):
                    value = await value
                result = _stringify(value)

                slot.functions.append(FunctionExec(name=decl.name, args=args, result=result))
                report.calls.append(FuncTrace(name=decl.name, args=marker.raw_args, result=result))
        return report


__all__ = [
    "FunctionCallMarker",
    "find_function_calls",
    "ArgsValidator",
    "JsonSchemaArgsValidator",
    "InvocationReport",
    "FunctionInvoker",
]
