"""
Menu tree matching
------------------
The authenticated menu is an ordered list of node descriptors. Each node
declares a token shape and whether it must match the whole input (EXACT) or
only its beginning (PREFIX, used by multi-step sub-flows that consume the
remaining tokens themselves).

Precedence: an EXACT node that matches the full sequence beats any PREFIX
node; among PREFIX nodes the longest shape wins; ties go to declaration order.

Sub-flows walk their steps with walk_steps(): each token either satisfies the
current step or fails validation, in which case the next token is read as a
re-entry for the same step.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from kudifi.constants import TOKEN_OPTIONS
from kudifi.core.errors import ValidationError

EXACT = "EXACT"
PREFIX = "PREFIX"

# A shape element is either a literal token or a predicate over the token
TokenShape = Union[str, Callable[[str], bool]]


def con(text: str) -> str:
    return f"CON {text}"


def end(text: str) -> str:
    return f"END {text}"


def is_token_option(token: str) -> bool:
    return token in TOKEN_OPTIONS


@dataclass(frozen=True)
class MenuNode:
    name: str
    kind: str
    shape: Tuple[TokenShape, ...]
    handler: Callable[..., str]

    def fits(self, tokens: Sequence[str]) -> bool:
        if self.kind == EXACT and len(tokens) != len(self.shape):
            return False
        if self.kind == PREFIX and len(tokens) < len(self.shape):
            return False
        for expected, token in zip(self.shape, tokens):
            if callable(expected):
                if not expected(token):
                    return False
            elif expected != token:
                return False
        return True


def select_node(nodes: Sequence[MenuNode], tokens: Sequence[str]) -> Optional[MenuNode]:
    best: Optional[MenuNode] = None
    for node in nodes:
        if not node.fits(tokens):
            continue
        if node.kind == EXACT:
            return node
        if best is None or len(node.shape) > len(best.shape):
            best = node
    return best


@dataclass
class Step:
    name: str
    parse: Callable[[str], Any]


@dataclass
class StepWalk:
    values: Dict[str, Any] = field(default_factory=dict)
    # Index of the step waiting for input; == len(steps) when every step is filled
    position: int = 0
    # Validation error raised by the most recent token, if it was rejected
    error: Optional[ValidationError] = None
    # Tokens left over after the last step was filled
    extra: Tuple[str, ...] = ()

    def done(self, steps: List[Step]) -> bool:
        return self.position >= len(steps)


def walk_steps(steps: List[Step], tokens: Sequence[str]) -> StepWalk:
    walk = StepWalk()
    for index, token in enumerate(tokens):
        if walk.position >= len(steps):
            walk.extra = tuple(tokens[index:])
            break
        step = steps[walk.position]
        try:
            walk.values[step.name] = step.parse(token)
        except ValidationError as e:
            walk.error = e
            continue
        walk.error = None
        walk.position += 1
    return walk
