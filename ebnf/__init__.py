"""Normalize EBNF grammars and compute their FIRST and FOLLOW sets.

Hand `build` the definitions your front end parsed; it gives you back a
`GrammarStore` with all the EBNF sugar lowered away. Hand that to `analyze`
and you get a `GrammarAnnotation` with the sets a parsing table builder needs.

    store = build([
        define("Digit", char("0") | char("1")),
        define("Number", ref("Digit") + rep(ref("Digit"))),
    ])
    print(store.format())
    annotation = analyze(store, start="Number")
"""
from . import grammar
from . import rules
from . import sets

from .grammar import *
from .rules import *
from .sets import *
