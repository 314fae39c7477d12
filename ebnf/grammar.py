"""Lower EBNF rule expressions into a plain grammar.

The output of this module is a `GrammarStore`: a table from nonterminal
identifier to a list of productions, where every production is a flat tuple of
symbols. There is no alternation, no repetition, no optionality and no
grouping left in a store; all of that sugar gets rewritten into helper
nonterminals while we walk each definition.

## Representation Choices

Nonterminals refer to each other all the time, often in cycles (recursion,
mutual recursion, the self-reference that every repetition turns into). So we
don't build a graph of objects that point at each other. There is one table,
keyed by a small integer, and everything else carries the integer around. The
integers are handed out by an `IdentifierAllocator`: named rules get theirs
first, in declaration order, and synthetic helpers get theirs afterwards, from
a counter that starts strictly above the last named one. That ordering is
also what makes forward references work: by the time we walk the first
definition every name already has an identifier.

## Lowering

Each construct becomes:

    X | Y | Z   ->   N = X | Y | Z     (one helper, one production per choice)
    { X }       ->   N = X N | ε       (right recursive)
    [ X ]       ->   N = X | ε
    ( X )       ->   N = X

and the construct itself is replaced by a reference to N. Sequences just
append into whatever production we're currently building. Set difference
(`A - B`) isn't supported; we'd rather fail than quietly produce the wrong
language.
"""

import dataclasses
import logging
import typing

from .rules import (
    Alternative,
    Character,
    Definition,
    Exclude,
    Group,
    Option,
    Reference,
    Repeat,
    Rule,
    Sequence,
)


build_log = logging.getLogger("ebnf.build")


###############################################################################
# Errors
###############################################################################
class GrammarError(Exception):
    """The root of everything this package raises on purpose."""


class BuildError(GrammarError, ValueError):
    """The definitions could not be lowered into a grammar.

    These are the user's fault, more or less: a typo in a name, a construct
    we don't do. `name` is the offending name when there is one.
    """

    name: str | None

    def __init__(self, message: str, name: str | None = None):
        super().__init__(message)
        self.name = name


class UnknownIdentifier(BuildError):
    def __init__(self, name: str):
        super().__init__(f"Unknown identifier {name}", name)


class DuplicateDefinition(BuildError):
    def __init__(self, name: str):
        super().__init__(f"{name} is defined more than once", name)


class UnsupportedConstruct(BuildError):
    construct: str

    def __init__(self, construct: str, name: str | None = None):
        where = f" (in {name})" if name is not None else ""
        super().__init__(f"{construct} is not supported{where}", name)
        self.construct = construct


class InvariantViolation(GrammarError, AssertionError):
    """The store is malformed.

    The builder never produces a store like this, so if you see one of these
    it's a bug somewhere, not a problem with the input grammar.
    """


###############################################################################
# Symbols
###############################################################################
NonTerminalId = typing.NewType("NonTerminalId", int)


@dataclasses.dataclass(frozen=True)
class Empty:
    """The empty string, ε. Only ever the sole symbol of a production."""

    def __str__(self) -> str:
        return "ε"


@dataclasses.dataclass(frozen=True)
class Wildcard:
    """Reserved for item-set construction. Not a valid grammar symbol."""

    def __str__(self) -> str:
        return "*"


@dataclasses.dataclass(frozen=True)
class EndOfInput:
    """The end-of-stream marker, `$`. Only shows up in FOLLOW sets."""

    def __str__(self) -> str:
        return "$"


@dataclasses.dataclass(frozen=True, order=True)
class NonTerminal:
    id: NonTerminalId

    def __str__(self) -> str:
        return f"<{self.id}>"


@dataclasses.dataclass(frozen=True, order=True)
class Terminal:
    char: str

    def __str__(self) -> str:
        return repr(self.char)


Symbol = Empty | Wildcard | EndOfInput | NonTerminal | Terminal

# Symbols compare by value, so these are just convenient spellings.
EMPTY = Empty()
WILDCARD = Wildcard()
END = EndOfInput()

Production = typing.Tuple[Symbol, ...]


###############################################################################
# Grammar Store
###############################################################################
class GrammarStore:
    """The normalized grammar: nonterminal identifier -> productions.

    A store is filled in by the builder and then frozen; after that it is
    read-only and can be shared by as many readers as you like. Insertion
    order is kept (we count on python dictionaries for that) but nothing in
    the set analysis depends on it.
    """

    _rules: dict[NonTerminalId, list[Production]]
    _names: dict[str, NonTerminalId]
    _ids: dict[NonTerminalId, str]
    _synthetic: set[NonTerminalId]
    _alphabet: set[str]
    _frozen: bool

    def __init__(self, names: dict[str, NonTerminalId] | None = None):
        self._rules = {}
        self._names = dict(names or {})
        self._ids = {id: name for name, id in self._names.items()}
        self._synthetic = set()
        self._alphabet = set()
        self._frozen = False

    def add(self, id: NonTerminalId, production: typing.Iterable[Symbol]):
        """Append one alternative to the productions for `id`."""
        if self._frozen:
            raise InvariantViolation("Cannot add productions to a frozen grammar store")

        production = tuple(production)
        for symbol in production:
            if isinstance(symbol, Terminal):
                self._alphabet.add(symbol.char)

        self._rules.setdefault(id, []).append(production)

    def mark_synthetic(self, id: NonTerminalId):
        if self._frozen:
            raise InvariantViolation("Cannot add identifiers to a frozen grammar store")
        self._synthetic.add(id)

    def freeze(self) -> "GrammarStore":
        """Check the store invariants and make it read-only.

        Every production must be non-empty, Empty may only appear as the
        sole symbol of a production, and every referenced nonterminal must
        have productions of its own.
        """
        if self._frozen:
            return self

        for id, productions in self._rules.items():
            for production in productions:
                if len(production) == 0:
                    raise InvariantViolation(f"Nonterminal {id} has an empty production")

                for symbol in production:
                    match symbol:
                        case Empty():
                            if len(production) != 1:
                                raise InvariantViolation(
                                    f"Empty is not the only symbol in {format_production(production)}"
                                )
                        case NonTerminal(id=target):
                            if target not in self._rules:
                                raise InvariantViolation(
                                    f"Nonterminal {id} refers to {target}, which has no productions"
                                )
                        case Terminal():
                            pass
                        case _:
                            raise InvariantViolation(f"{symbol} cannot appear in a production")

        self._frozen = True

        if build_log.isEnabledFor(logging.INFO):
            build_log.info(
                "Froze grammar: %d named, %d synthetic, %d terminals",
                len(self._names),
                len(self._synthetic),
                len(self._alphabet),
            )
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def alphabet(self) -> frozenset[str]:
        """Every character that appears in any production."""
        return frozenset(self._alphabet)

    @property
    def identifiers(self) -> frozenset[NonTerminalId]:
        """The whole identifier universe: named, synthetic, and anything else
        that was given productions by hand.
        """
        return (
            frozenset(self._names.values()) | frozenset(self._synthetic) | frozenset(self._rules)
        )

    @property
    def named(self) -> frozenset[NonTerminalId]:
        return frozenset(self._names.values())

    @property
    def synthetic(self) -> frozenset[NonTerminalId]:
        return frozenset(self._synthetic)

    @property
    def names(self) -> dict[str, NonTerminalId]:
        return dict(self._names)

    def identifier(self, name: str) -> NonTerminalId:
        """The identifier of the named rule `name`."""
        id = self._names.get(name)
        if id is None:
            raise UnknownIdentifier(name)
        return id

    def name_of(self, id: NonTerminalId) -> str | None:
        """The name of the rule with identifier `id`, or None if it's a helper."""
        return self._ids.get(id)

    def productions(self, id: NonTerminalId) -> typing.Tuple[Production, ...]:
        return tuple(self._rules[id])

    def __getitem__(self, id: NonTerminalId) -> typing.Tuple[Production, ...]:
        return self.productions(id)

    def __contains__(self, id: object) -> bool:
        return id in self._rules

    def __iter__(self) -> typing.Iterator[NonTerminalId]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def items(self) -> typing.Iterator[typing.Tuple[NonTerminalId, typing.Tuple[Production, ...]]]:
        for id, productions in self._rules.items():
            yield id, tuple(productions)

    def format(self, *, names: bool = True) -> str:
        return format_store(self, names=names)

    def __str__(self) -> str:
        return self.format()


###############################################################################
# Identifier Allocator
###############################################################################
class IdentifierAllocator:
    """Hands out nonterminal identifiers.

    The named rules get 0..N-1 in declaration order, up front. Synthetic
    identifiers then start at N+1; slot N is deliberately never used, so
    even an off-by-one somewhere in the builder can't make a helper collide
    with a named rule. Identifiers are never reused.
    """

    names: dict[str, NonTerminalId]
    issued: set[NonTerminalId]
    _counter: int

    def __init__(self, names: typing.Iterable[str]):
        self.names = {}
        for index, name in enumerate(names):
            if name in self.names:
                raise DuplicateDefinition(name)
            self.names[name] = NonTerminalId(index)

        self.issued = set(self.names.values())
        self._counter = len(self.names) + 1

    def lookup(self, name: str) -> NonTerminalId:
        id = self.names.get(name)
        if id is None:
            raise UnknownIdentifier(name)
        return id

    def next(self) -> NonTerminalId:
        id = NonTerminalId(self._counter)
        self._counter += 1
        self.issued.add(id)
        return id


###############################################################################
# Desugaring
###############################################################################
class GrammarBuilder:
    """Walks each definition and emits productions into a fresh store.

    Use `build()` unless you need the allocator afterwards.
    """

    allocator: IdentifierAllocator
    store: GrammarStore

    # The definition we're currently walking, for error messages.
    _current: str | None

    def __init__(self, definitions: typing.Iterable[Definition]):
        self.definitions = list(definitions)
        self.allocator = IdentifierAllocator(d.name for d in self.definitions)
        self.store = GrammarStore(self.allocator.names)
        self._current = None

    def build(self) -> GrammarStore:
        for definition in self.definitions:
            self._current = definition.name
            id = self.allocator.lookup(definition.name)
            build_log.debug("Lowering %s as %d", definition.name, id)

            match definition.rule:
                case Alternative(rules=rules):
                    # A choice at the very top of a definition is already
                    # the definition's own set of productions; it doesn't
                    # need a helper of its own.
                    for sub in rules:
                        self._emit(id, sub)
                case rule:
                    self._emit(id, rule)
        self._current = None

        return self.store.freeze()

    def _emit(self, id: NonTerminalId, rule: Rule) -> Production:
        """Lower `rule` into one new production for `id`, and return it."""
        production: list[Symbol] = []
        self._desugar(production, rule)
        if len(production) == 0:
            # An empty sequence matches the empty string, and that has
            # exactly one spelling in a store.
            production.append(EMPTY)
        self.store.add(id, production)
        return tuple(production)

    def _fresh(self, why: str) -> NonTerminalId:
        id = self.allocator.next()
        self.store.mark_synthetic(id)
        build_log.debug("  %d: %s in %s", id, why, self._current)
        return id

    def _desugar(self, production: list[Symbol], rule: Rule):
        match rule:
            case Character(char=c):
                production.append(Terminal(c))

            case Reference(name=name):
                production.append(NonTerminal(self.allocator.lookup(name)))

            case Sequence(rules=rules):
                for sub in rules:
                    self._desugar(production, sub)

            case Alternative(rules=rules):
                id = self._fresh("alternative")
                for sub in rules:
                    self._emit(id, sub)
                production.append(NonTerminal(id))

            case Repeat(rule=sub):
                # N = X N | ε
                id = self._fresh("repetition")
                body: list[Symbol] = []
                self._desugar(body, sub)
                body.append(NonTerminal(id))
                self.store.add(id, body)
                self.store.add(id, (EMPTY,))
                production.append(NonTerminal(id))

            case Option(rule=sub):
                # N = X | ε
                id = self._fresh("option")
                if self._emit(id, sub) != (EMPTY,):
                    # X can already be empty; one ε production is enough.
                    self.store.add(id, (EMPTY,))
                production.append(NonTerminal(id))

            case Group(rule=sub):
                id = self._fresh("group")
                self._emit(id, sub)
                production.append(NonTerminal(id))

            case Exclude():
                raise UnsupportedConstruct("Set difference (exclude)", self._current)

            case _:
                raise TypeError(f"Not a rule expression: {rule!r}")


def build(definitions: typing.Iterable[Definition]) -> GrammarStore:
    """Lower a list of definitions into a frozen grammar store.

    Raises a `BuildError` (and returns nothing) if any definition refers to a
    name that isn't defined, if a name is defined twice, or if a definition
    uses a construct we can't lower.
    """
    return GrammarBuilder(definitions).build()


###############################################################################
# Debugging
###############################################################################
def format_production(production: typing.Iterable[Symbol]) -> str:
    return " ".join(str(symbol) for symbol in production)


def format_store(store: GrammarStore, *, names: bool = True) -> str:
    """Render a store one alternative per line, `id = symbol symbol ...`.

    This is for looking at, not for parsing back in.
    """
    lines = []
    for id, productions in store.items():
        name = store.name_of(id) if names else None
        trailer = f"  # {name}" if name is not None else ""
        for production in productions:
            lines.append(f"{id} = {format_production(production)}{trailer}")
    return "\n".join(lines)
