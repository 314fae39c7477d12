"""Rule expressions: the tree a front end hands us for each named definition.

The tokenizer and recursive-descent parser that read textual EBNF live
elsewhere. What they produce is a list of `Definition`s, each one a name and a
tree of `Rule` nodes, and that is what this module describes. Since it is just
Python data you can also build these trees by hand, which is what the tests
do:

    digit = define("Digit", char("0") | char("1"))
    number = define("Number", ref("Digit") + rep(ref("Digit")))

The nodes are immutable and compare by value, so two trees built the same
way are equal.
"""

import dataclasses
import typing


class Rule:
    """One node in a rule expression.

    `|` makes an alternative and `+` makes a sequence, like the operators on
    the rules in the grammar-building sugar of a parser generator. Chains of
    the same operator flatten, so `a | b | c` is a single three-way choice
    and not a choice nested inside another choice. (That matters: every
    `Alternative` node turns into its own helper nonterminal.)
    """

    def __or__(self, other: "Rule | str") -> "Rule":
        return alt(self, other)

    def __ror__(self, other: "Rule | str") -> "Rule":
        return alt(other, self)

    def __add__(self, other: "Rule | str") -> "Rule":
        return seq(self, other)

    def __radd__(self, other: "Rule | str") -> "Rule":
        return seq(other, self)


@dataclasses.dataclass(frozen=True)
class Character(Rule):
    """A single literal character."""

    char: str

    def __post_init__(self):
        if not isinstance(self.char, str) or len(self.char) != 1:
            raise ValueError(f"A character rule matches exactly one character, not {self.char!r}")


@dataclasses.dataclass(frozen=True)
class Reference(Rule):
    """A reference to a named definition, by name."""

    name: str


@dataclasses.dataclass(frozen=True)
class Sequence(Rule):
    """Sub-rules matched one after another.

    An empty sequence matches nothing at all, which is how the empty
    alternative in `a | ` comes through.
    """

    rules: typing.Tuple[Rule, ...]


@dataclasses.dataclass(frozen=True)
class Alternative(Rule):
    """A choice between sub-rules."""

    rules: typing.Tuple[Rule, ...]

    def __post_init__(self):
        if len(self.rules) == 0:
            raise ValueError("An alternative needs at least one choice")


@dataclasses.dataclass(frozen=True)
class Repeat(Rule):
    """Zero or more of a rule: `{ X }`."""

    rule: Rule


@dataclasses.dataclass(frozen=True)
class Option(Rule):
    """Zero or one of a rule: `[ X ]`."""

    rule: Rule


@dataclasses.dataclass(frozen=True)
class Group(Rule):
    """A parenthesised rule: `( X )`."""

    rule: Rule


@dataclasses.dataclass(frozen=True)
class Exclude(Rule):
    """Set difference: `A - B`.

    The front end can parse it, but nothing downstream knows what it means
    yet, so desugaring rejects it.
    """

    source: Rule
    excluded: Rule


@dataclasses.dataclass(frozen=True)
class Definition:
    """A named rule: `name = rule ;`"""

    name: str
    rule: Rule


###############################################################################
# Sugar
###############################################################################
def _promote(rule: "Rule | str") -> Rule:
    if isinstance(rule, str):
        return string(rule)
    if not isinstance(rule, Rule):
        raise TypeError(f"Expected a rule or a string, got {rule!r}")
    return rule


def _seq_of(args: typing.Tuple["Rule | str", ...]) -> Rule:
    if len(args) == 1:
        return _promote(args[0])
    return seq(*args)


def char(c: str) -> Character:
    return Character(c)


def string(s: str) -> Sequence:
    """A quoted string: one character rule per character, in order."""
    return Sequence(tuple(Character(c) for c in s))


def ref(name: str) -> Reference:
    return Reference(name)


def seq(*args: "Rule | str") -> Sequence:
    """A rule that matches a sequence of rules.

    Nested sequences are spliced in, since sequencing is associative and the
    extra nesting would mean nothing.
    """
    rules: list[Rule] = []
    for arg in args:
        rule = _promote(arg)
        if isinstance(rule, Sequence):
            rules.extend(rule.rules)
        else:
            rules.append(rule)
    return Sequence(tuple(rules))


def alt(*args: "Rule | str") -> Alternative:
    """A rule that matches one of a series of alternatives."""
    rules: list[Rule] = []
    for arg in args:
        rule = _promote(arg)
        if isinstance(rule, Alternative):
            rules.extend(rule.rules)
        else:
            rules.append(rule)
    return Alternative(tuple(rules))


def rep(*args: "Rule | str") -> Repeat:
    return Repeat(_seq_of(args))


def opt(*args: "Rule | str") -> Option:
    """Mark a sequence as optional."""
    return Option(_seq_of(args))


def group(*args: "Rule | str") -> Group:
    return Group(_seq_of(args))


def exclude(source: "Rule | str", excluded: "Rule | str") -> Exclude:
    return Exclude(_promote(source), _promote(excluded))


def define(name: str, rule: "Rule | str") -> Definition:
    return Definition(name, _promote(rule))
