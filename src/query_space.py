"""
Search-key generation for the remote catalog.

The catalog only offers keyword search, so the crawler pages through it with
every 3-letter combination of the alphabet.
"""

from itertools import product
from typing import Iterator

from config import LETTERS, QUERY_LENGTH


def generate_query_keys(alphabet: str = LETTERS, length: int = QUERY_LENGTH) -> Iterator[str]:
    """
    Yield every ``length``-letter string over ``alphabet`` in lexicographic order.

    For the default 28-letter alphabet that is 28**3 = 21,952 keys, starting
    with "ааа", "ааб", "аав". Each call returns a fresh generator.
    """
    for letters in product(alphabet, repeat=length):
        yield "".join(letters)


def query_space_size(alphabet: str = LETTERS, length: int = QUERY_LENGTH) -> int:
    """Number of keys ``generate_query_keys`` yields."""
    return len(alphabet) ** length
