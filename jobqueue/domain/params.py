from typing import Any


def params_equal(left: Any, right: Any) -> bool:
    """
    Strict structural equality of two JSON values.

    Python's `==` treats `True == 1` and `1.0 == 1`; JSON does not consider a
    boolean equal to a number, so booleans only match booleans here. Object key
    order is irrelevant, array order is not.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right

    if isinstance(left, dict):
        if not isinstance(right, dict) or left.keys() != right.keys():
            return False
        return all(params_equal(left[k], right[k]) for k in left)

    if isinstance(left, (list, tuple)):
        if not isinstance(right, (list, tuple)) or len(left) != len(right):
            return False
        return all(params_equal(a, b) for a, b in zip(left, right))

    if isinstance(left, (int, float)):
        return isinstance(right, (int, float)) and left == right

    return type(left) is type(right) and left == right
