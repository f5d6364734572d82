from config import LETTERS
from query_space import generate_query_keys, query_space_size


def test_default_alphabet_has_28_letters():
    assert len(LETTERS) == 28
    assert query_space_size() == 21952


def test_yields_every_key_once_in_order():
    keys = list(generate_query_keys())

    assert len(keys) == 28 ** 3
    assert len(set(keys)) == len(keys)
    assert keys[:3] == ["ааа", "ааб", "аав"]
    assert keys[-1] == "яяя"
    assert keys == sorted(keys, key=lambda k: [LETTERS.index(c) for c in k])


def test_small_alphabet_is_exhausted_after_k_cubed_draws():
    keys = generate_query_keys("abc")

    drawn = [next(keys) for _ in range(27)]

    assert drawn[:3] == ["aaa", "aab", "aac"]
    assert drawn[-1] == "ccc"
    assert next(keys, None) is None


def test_each_call_restarts_from_the_beginning():
    first = generate_query_keys("xy")
    next(first)
    next(first)

    assert next(generate_query_keys("xy")) == "xxx"
