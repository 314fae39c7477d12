import logging

import pytest

from ebnf import (
    EMPTY,
    BuildError,
    DuplicateDefinition,
    GrammarStore,
    IdentifierAllocator,
    InvariantViolation,
    NonTerminal,
    Terminal,
    UnknownIdentifier,
    UnsupportedConstruct,
    WILDCARD,
    alt,
    build,
    char,
    define,
    exclude,
    format_store,
    group,
    opt,
    ref,
    rep,
    seq,
)
from ebnf.rules import Alternative, Character, Sequence


def T(c: str) -> Terminal:
    return Terminal(c)


def N(id: int) -> NonTerminal:
    return NonTerminal(id)


def number_grammar():
    return build(
        [
            define("Digit", char("0") | char("1")),
            define("Number", ref("Digit") + rep(ref("Digit"))),
        ]
    )


def test_number_grammar():
    store = number_grammar()

    digit = store.identifier("Digit")
    number = store.identifier("Number")
    assert (digit, number) == (0, 1)

    assert store[digit] == ((T("0"),), (T("1"),))

    assert len(store[number]) == 1
    [(first, helper)] = store[number]
    assert first == N(digit)
    assert isinstance(helper, NonTerminal)
    assert helper.id in store.synthetic

    assert store[helper.id] == ((N(digit), helper), (EMPTY,))


def test_only_named_rules():
    """No sugar means no helpers: one key and one production per rule."""
    store = build(
        [
            define("A", char("a") + ref("B")),
            define("B", seq("b", ref("C"))),
            define("C", "c"),
        ]
    )
    assert len(store) == 3
    assert store.synthetic == frozenset()
    for id in store:
        assert len(store[id]) == 1

    assert store[0] == ((T("a"), N(1)),)
    assert store[1] == ((T("b"), N(2)),)
    assert store[2] == ((T("c"),),)


def test_forward_reference():
    store = build([define("A", ref("B")), define("B", char("b"))])
    assert store[0] == ((N(1),),)


def test_synthetic_ids_start_above_named():
    store = build(
        [
            define("A", opt("a")),
            define("B", rep("b")),
            define("C", group("c")),
        ]
    )
    assert store.named == frozenset({0, 1, 2})
    assert store.synthetic == frozenset({4, 5, 6})
    assert store.identifiers == store.named | store.synthetic


def test_option():
    store = build([define("A", opt("x"))])
    [(helper,)] = store[0]
    assert store[helper.id] == ((T("x"),), (EMPTY,))


def test_group():
    store = build([define("A", group(char("a"), char("b")))])
    [(helper,)] = store[0]
    assert store[helper.id] == ((T("a"), T("b")),)


def test_nested_alternative_gets_a_helper():
    store = build([define("A", char("a") + (char("b") | char("c")))])
    [(a, helper)] = store[0]
    assert a == T("a")
    assert helper.id in store.synthetic
    assert store[helper.id] == ((T("b"),), (T("c"),))


def test_alternatives_flatten():
    rule = char("a") | char("b") | "c"
    assert isinstance(rule, Alternative)
    assert len(rule.rules) == 3

    store = build([define("A", rule)])
    assert len(store) == 1
    assert store[0] == ((T("a"),), (T("b"),), (T("c"),))


def test_repeat_of_alternative():
    store = build([define("A", rep(char("a") | char("b")))])
    [(repeat,)] = store[0]
    (body, empty) = store[repeat.id]
    assert empty == (EMPTY,)
    [choice, again] = body
    assert again == repeat
    assert store[choice.id] == ((T("a"),), (T("b"),))
    # The repetition was allocated before the choice inside it.
    assert repeat.id < choice.id


def test_empty_sequence_becomes_empty():
    store = build(
        [
            define("A", alt("a", seq())),
            define("B", ""),
        ]
    )
    assert store[0] == ((T("a"),), (EMPTY,))
    assert store[1] == ((EMPTY,),)


def test_string_is_characters():
    assert define("A", "abc").rule == Sequence((Character("a"), Character("b"), Character("c")))


def test_character_is_one_character():
    with pytest.raises(ValueError):
        char("ab")
    with pytest.raises(ValueError):
        char("")


def test_alphabet():
    store = number_grammar()
    assert store.alphabet == frozenset({"0", "1"})


def test_unknown_identifier():
    with pytest.raises(UnknownIdentifier) as info:
        build([define("X", ref("Y"))])
    assert info.value.name == "Y"
    assert "Y" in str(info.value)
    assert isinstance(info.value, BuildError)


def test_unknown_identifier_deep_inside():
    with pytest.raises(UnknownIdentifier) as info:
        build([define("X", rep(opt("a", group(ref("Missing")))))])
    assert info.value.name == "Missing"


def test_exclude_is_unsupported():
    with pytest.raises(UnsupportedConstruct) as info:
        build(
            [
                define("Letter", char("a") | char("b")),
                define("NotB", exclude(ref("Letter"), char("b"))),
            ]
        )
    assert info.value.name == "NotB"
    assert isinstance(info.value, BuildError)
    assert isinstance(info.value, ValueError)


def test_duplicate_definition():
    with pytest.raises(DuplicateDefinition) as info:
        build([define("A", "a"), define("A", "b")])
    assert info.value.name == "A"


def test_names():
    store = number_grammar()
    assert store.names == {"Digit": 0, "Number": 1}
    assert store.name_of(0) == "Digit"
    assert store.name_of(1) == "Number"
    for id in store.synthetic:
        assert store.name_of(id) is None

    with pytest.raises(UnknownIdentifier):
        store.identifier("Letter")


def test_built_store_is_frozen():
    store = number_grammar()
    assert store.frozen
    with pytest.raises(InvariantViolation):
        store.add(0, [T("2")])


def test_freeze_rejects_empty_production():
    store = GrammarStore()
    store.add(0, [])
    with pytest.raises(InvariantViolation):
        store.freeze()


def test_freeze_rejects_misplaced_empty():
    store = GrammarStore()
    store.add(0, [T("a"), EMPTY])
    with pytest.raises(InvariantViolation):
        store.freeze()


def test_freeze_rejects_dangling_reference():
    store = GrammarStore()
    store.add(0, [N(7)])
    with pytest.raises(InvariantViolation):
        store.freeze()


def test_freeze_rejects_wildcard():
    store = GrammarStore()
    store.add(0, [WILDCARD])
    with pytest.raises(InvariantViolation):
        store.freeze()


def test_format():
    store = number_grammar()
    helper = min(store.synthetic)
    assert store.format().splitlines() == [
        "0 = '0'  # Digit",
        "0 = '1'  # Digit",
        f"{helper} = <0> <{helper}>",
        f"{helper} = ε",
        f"1 = <0> <{helper}>  # Number",
    ]

    assert "#" not in store.format(names=False)


def test_build_logging(caplog):
    with caplog.at_level(logging.DEBUG, logger="ebnf.build"):
        number_grammar()

    assert "Digit" in caplog.text
    assert "repetition" in caplog.text
    assert "2 named, 1 synthetic" in caplog.text


def test_allocator():
    allocator = IdentifierAllocator(["A", "B", "C"])
    assert allocator.lookup("A") == 0
    assert allocator.lookup("C") == 2

    # Slot 3 is never handed out.
    assert [allocator.next() for _ in range(3)] == [4, 5, 6]
    assert allocator.issued == {0, 1, 2, 4, 5, 6}

    with pytest.raises(UnknownIdentifier):
        allocator.lookup("D")


def test_option_of_nothing_has_one_empty():
    store = build([define("A", opt("")), define("B", opt(seq()))])
    for name in "AB":
        [(helper,)] = store[store.identifier(name)]
        assert store[helper.id] == ((EMPTY,),)


def test_format_names_is_keyword_only():
    store = number_grammar()
    with pytest.raises(TypeError):
        store.format(False)  # type: ignore
    with pytest.raises(TypeError):
        format_store(store, False)  # type: ignore


def test_hand_built_identifiers():
    store = GrammarStore({"S": 0})
    store.add(0, [N(9)])
    store.add(9, [T("x")])
    assert store.identifiers == frozenset({0, 9})
    assert store.name_of(0) == "S"
    assert store.name_of(9) is None
