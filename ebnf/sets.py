"""FIRST and FOLLOW sets over a grammar store.

(The notes I keep going back to for this are handout 7 of the Stanford CS143
lecture notes, which is where First() and Follow() are covered.)

FIRST(X) is the set of terminals that can come first in anything X derives,
plus Empty if X can derive nothing at all. FOLLOW(A) is the set of terminals
that can come right after A in some derivation. Table builders for LL(1) and
SLR need both, and `analyze` computes all of them at once and hands back a
`GrammarAnnotation`.

Both are computed by iterating to a fixed point. For FOLLOW there is no way
around it: FOLLOW(A) can depend on FOLLOW(B), which depends right back on
FOLLOW(A), and naive recursion either never terminates or stops too early.
For FIRST, plain structural recursion works until somebody writes a left
recursive rule (`E = E "+" T | T`) and then it recurses forever; the fixed
point gives the same answer on everything else and also survives that.
"""

import dataclasses
import logging
import types
import typing

from .grammar import (
    EMPTY,
    END,
    Empty,
    GrammarStore,
    InvariantViolation,
    NonTerminal,
    NonTerminalId,
    Symbol,
    Terminal,
    UnknownIdentifier,
    format_production,
)


sets_log = logging.getLogger("ebnf.sets")


def update_changed(items: set[Symbol], other: typing.AbstractSet[Symbol]) -> bool:
    """Merge the `other` set into the `items` set, and return True if this
    changed the items set.
    """
    old_len = len(items)
    items.update(other)
    return old_len != len(items)


def sequence_first(
    symbols: typing.Iterable[Symbol],
    nonterminal_first: typing.Callable[[NonTerminalId], typing.AbstractSet[Symbol]],
) -> set[Symbol]:
    """Return the first set for a *sequence* of symbols.

    Combine the first sets of the symbols from left to right as long as
    Empty remains in them. The first symbol that can't be empty ends the scan
    and the result doesn't contain Empty. If we reach the end and every
    symbol could have been empty, then the sequence can be too.

    `nonterminal_first` looks up the (possibly still partial) first set of a
    nonterminal.
    """
    result: set[Symbol] = set()
    for symbol in symbols:
        match symbol:
            case Empty():
                continue
            case Terminal():
                result.add(symbol)
                return result
            case NonTerminal(id=id):
                other = nonterminal_first(id)
                result.update(s for s in other if s != EMPTY)
                if EMPTY not in other:
                    return result
            case _:
                raise InvariantViolation(f"{symbol} has no first set")

    result.add(EMPTY)
    return result


@dataclasses.dataclass(frozen=True)
class FirstInfo:
    """The first set of every nonterminal in a store. (Or, as it is commonly
    styled in textbooks, FIRST.)

    firsts[id] is the set of terminals that can start nonterminal id, and
    contains Empty if and only if the nonterminal can match zero characters.

    For example, consider following grammar:

        0 = <1> 'a'
        1 = <2>
        1 = 'b' <0>
        1 = ε
        2 = 'c'
        2 = 'd' <0>

    FIRST[2] is ('c', 'd').

    FIRST[1] is ('b', 'c', 'd', ε). The first production contributes
    FIRST[2], the second contributes 'b', and the third can match nothing,
    which is where the ε comes from.

    Finally, FIRST[0] is ('a', 'b', 'c', 'd'). ('b', 'c', 'd') comes from
    FIRST[1], as <1> is first in the only production. The 'a' comes from the
    fact that <1> can match empty input, so 0 can also begin with 'a'. But
    'a' itself can't be empty, so 0 can't either.
    """

    firsts: dict[NonTerminalId, set[Symbol]]

    @classmethod
    def from_store(cls, store: GrammarStore) -> "FirstInfo":
        firsts: dict[NonTerminalId, set[Symbol]] = {id: set() for id in store}

        def lookup(id: NonTerminalId) -> set[Symbol]:
            f = firsts.get(id)
            if f is None:
                raise InvariantViolation(f"Nonterminal {id} has no productions")
            return f

        # Every pass can only add to the sets, and they can't grow past the
        # alphabet plus Empty, so this stops.
        changed = True
        while changed:
            changed = False
            for id, productions in store.items():
                f = firsts[id]
                for production in productions:
                    changed = update_changed(f, sequence_first(production, lookup)) or changed

        return FirstInfo(firsts=firsts)

    def first(self, symbol: Symbol) -> frozenset[Symbol]:
        match symbol:
            case Empty():
                return frozenset((EMPTY,))
            case Terminal():
                return frozenset((symbol,))
            case NonTerminal(id=id):
                f = self.firsts.get(id)
                if f is None:
                    raise InvariantViolation(f"Nonterminal {id} has no productions")
                return frozenset(f)
            case _:
                raise InvariantViolation(f"{symbol} has no first set")


def first(store: GrammarStore, symbol: Symbol) -> frozenset[Symbol]:
    """FIRST of a single symbol.

    This works out the first sets of the whole store to answer, so if you
    want more than one of them use `FirstInfo` (or `analyze`) instead.
    """
    match symbol:
        case NonTerminal():
            return FirstInfo.from_store(store).first(symbol)
        case _:
            return FirstInfo(firsts={}).first(symbol)


def follow_pass(
    store: GrammarStore,
    firsts: FirstInfo,
    follows: dict[NonTerminalId, set[Symbol]],
) -> bool:
    """Make one full pass over every production, growing `follows` in place.

    For every occurrence of a nonterminal we scan the rest of its production
    left to right, folding the first set of each symbol into the follow set
    of the occurrence. The first symbol that can't be empty stops the scan.
    If nothing stopped it (including when the occurrence is the last thing
    in the production) then whatever follows the owning nonterminal can
    follow this one too.

    Returns True if any follow set changed.
    """
    changed = False
    for name, productions in store.items():
        for production in productions:
            for index, symbol in enumerate(production):
                if not isinstance(symbol, NonTerminal):
                    continue

                f = follows.setdefault(symbol.id, set())
                for next in production[index + 1 :]:
                    match next:
                        case Terminal():
                            changed = update_changed(f, {next}) or changed
                            break
                        case NonTerminal():
                            next_first = firsts.first(next)
                            # Follow sets hold terminals only, never Empty.
                            changed = update_changed(f, next_first - {EMPTY}) or changed
                            if EMPTY not in next_first:
                                break
                        case _:
                            raise InvariantViolation(
                                f"Unexpected {next} after {symbol} in {format_production(production)}"
                            )
                else:
                    changed = update_changed(f, follows.setdefault(name, set())) or changed

    return changed


@dataclasses.dataclass(frozen=True)
class FollowInfo:
    """The follow set of every nonterminal in a store. (Or, again, as the
    textbooks would have it, FOLLOW.)

    Consider this nonsense grammar:

        0 = <1> 'a'
        1 = <3> 'b'
        1 = <3> <2>
        3 = <1> 'c'
        2 = 'd'
        2 = ε

    FOLLOW[3] is ('a', 'b', 'c', 'd'). 'b' comes from the first production
    of 1, that's easy. 'd' comes from the second production of 1: FIRST[2]
    is ('d', ε), and the 'd' goes into FOLLOW[3].

    'a' and 'c' are the surprising ones: they come from the fact that 2 can
    be empty. That means <3> might as well be at the end of 1, and anything
    that can follow 1 can also follow 3. FOLLOW[1] is ('a', 'c'), from the
    productions of 0 and 3, so those are in FOLLOW[3] too.

    Follow sets never contain Empty. They only contain the end-of-input
    marker if `start` was given; otherwise a nonterminal that nothing refers
    to has an empty follow set.
    """

    follows: dict[NonTerminalId, set[Symbol]]
    passes: int

    @classmethod
    def from_store(
        cls,
        store: GrammarStore,
        firsts: FirstInfo,
        start: NonTerminalId | None = None,
    ) -> "FollowInfo":
        follows: dict[NonTerminalId, set[Symbol]] = {id: set() for id in store.identifiers}
        for id in store:
            follows.setdefault(id, set())
        if start is not None:
            follows[start].add(END)

        # Each pass has to see everything the previous pass merged, so they
        # run one after another until one of them doesn't change anything.
        passes = 0
        changed = True
        while changed:
            passes += 1
            changed = follow_pass(store, firsts, follows)
            sets_log.debug("Follow pass %d: %s", passes, "changed" if changed else "stable")

        sets_log.info("Follow sets converged after %d passes", passes)
        return FollowInfo(follows=follows, passes=passes)


@dataclasses.dataclass(frozen=True)
class GrammarAnnotation:
    """Everything a table builder needs to know about a grammar's sets.

    `firsts` has an entry for Empty, every terminal and every nonterminal;
    `follows` has an entry for every nonterminal, even if it is empty.
    """

    alphabet: frozenset[str]
    identifiers: frozenset[NonTerminalId]
    firsts: typing.Mapping[Symbol, frozenset[Symbol]]
    follows: typing.Mapping[NonTerminalId, frozenset[Symbol]]
    start: NonTerminalId | None = None

    def first(self, symbol: Symbol) -> frozenset[Symbol]:
        return self.firsts[symbol]

    def follow(self, id: NonTerminalId) -> frozenset[Symbol]:
        return self.follows[id]

    def is_nullable(self, id: NonTerminalId) -> bool:
        return EMPTY in self.firsts[NonTerminal(id)]

    def first_of(self, symbols: typing.Iterable[Symbol]) -> frozenset[Symbol]:
        """FIRST of a sequence of symbols, e.g. the right-hand side of a
        production.
        """
        return frozenset(sequence_first(symbols, lambda id: self.firsts[NonTerminal(id)]))


def analyze(
    store: GrammarStore,
    *,
    start: NonTerminalId | str | None = None,
) -> GrammarAnnotation:
    """Compute FIRST and FOLLOW for everything in `store`.

    The store must already be frozen (`build` returns frozen stores; call
    `freeze()` on one you filled in yourself); this never modifies it. If
    `start` (a rule name or identifier) is given, the end-of-input marker is
    placed in its follow set, which is how table builders usually want it.
    """
    if not store.frozen:
        raise InvariantViolation("Freeze the grammar store before analyzing it")

    start_id: NonTerminalId | None
    if start is None:
        start_id = None
    elif isinstance(start, str):
        start_id = store.identifier(start)
    elif start in store:
        start_id = start
    else:
        raise UnknownIdentifier(str(start))

    firsts = FirstInfo.from_store(store)

    first_map: dict[Symbol, frozenset[Symbol]] = {EMPTY: frozenset((EMPTY,))}
    for char in sorted(store.alphabet):
        terminal = Terminal(char)
        first_map[terminal] = firsts.first(terminal)
    for id in sorted(store.identifiers):
        nonterminal = NonTerminal(id)
        first_map[nonterminal] = firsts.first(nonterminal)

    follows = FollowInfo.from_store(store, firsts, start_id)
    follow_map = {id: frozenset(follows.follows[id]) for id in sorted(store.identifiers)}

    return GrammarAnnotation(
        alphabet=store.alphabet,
        identifiers=store.identifiers,
        firsts=types.MappingProxyType(first_map),
        follows=types.MappingProxyType(follow_map),
        start=start_id,
    )
