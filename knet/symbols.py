# symbols.py
# ---------------------------------------------
# Fresh symbol minting for intermediate registers.
# Names look like ##w#12 so they never collide with a Python identifier.
# ---------------------------------------------

import threading

FRESH_PREFIX = "##"


class SymbolGenerator:
    def __init__(self, start=0):
        self._next = start
        self._lock = threading.Lock()

    def fresh(self, hint="t"):
        """
        Mint a new symbol name, unique for the lifetime of this generator.

        The counter is advanced under a lock so concurrent compilations
        sharing one generator never hand out the same name.
        """
        with self._lock:
            n = self._next
            self._next += 1
        return f"{FRESH_PREFIX}{hint}#{n}"

    def reset(self, start=0):
        """Reset the counter (tests use this for reproducible names)."""
        with self._lock:
            self._next = start

    @property
    def count(self):
        """Number the next fresh symbol will carry."""
        return self._next


def is_fresh(name):
    """True if name was minted by a SymbolGenerator."""
    return isinstance(name, str) and name.startswith(FRESH_PREFIX)


namer = SymbolGenerator()
