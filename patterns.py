"""
Candidate generation from digit-pattern templates.

A template mixes literal digits with the variable markers a, b, c and d:

    "abab888" -> 0101888, 0202888, ..., 9898888
    "888abab" -> 8880101, 8880202, ..., 8889898
    "aaaabbb" -> 0000111, 0000222, ..., 9999888

Every occurrence of a marker takes the same digit and different markers never
share a digit. Literal digits are left alone, so "a4" may still produce "54".
"""

from itertools import permutations

from errors import ConfigurationError

VARIABLE_MARKERS = "abcd"
EXCLUDED_DIGIT = "4"
ALL_DIGITS = "0123456789"


def variable_markers(template):
    """Return the distinct markers of a template in order of first appearance"""
    seen = []
    for char in template:
        if char in VARIABLE_MARKERS and char not in seen:
            seen.append(char)
    return seen


def validate_template(template):
    """Raise ConfigurationError unless the template can be enumerated"""
    if not isinstance(template, str):
        raise ConfigurationError(f"Search pattern must be a string, got {type(template).__name__}")
    if not template:
        raise ConfigurationError("Search pattern is empty")

    invalid = sorted({char for char in template if char not in ALL_DIGITS and char not in VARIABLE_MARKERS})
    if invalid:
        raise ConfigurationError(
            f"Search pattern {template!r} contains invalid characters {invalid}; "
            f"use digits 0-9 and the markers {', '.join(VARIABLE_MARKERS)}"
        )

    markers = variable_markers(template)
    if len(markers) > len(VARIABLE_MARKERS):
        raise ConfigurationError(
            f"Search pattern {template!r} uses {len(markers)} markers, at most {len(VARIABLE_MARKERS)} are supported"
        )


def available_digits(exclude_digit_4):
    if exclude_digit_4:
        return [digit for digit in ALL_DIGITS if digit != EXCLUDED_DIGIT]
    return list(ALL_DIGITS)


def universe_size(template, exclude_digit_4):
    """Number of candidates a template yields, computed without enumerating them"""
    validate_template(template)
    base = len(available_digits(exclude_digit_4))
    size = 1
    for offset in range(len(variable_markers(template))):
        size *= base - offset
    return size


def render(template, binding):
    """Substitute each marker occurrence with its bound digit"""
    return "".join(binding.get(char, char) for char in template)


def enumerate_candidates(template, exclude_digit_4=False):
    """
    Return the set of every candidate the template can produce.

    Each assignment of pairwise distinct digits to the template's markers is
    rendered once. With exclude_digit_4 the digit 4 is never bound to a
    marker; literal 4s in the template are kept.
    """
    validate_template(template)
    markers = variable_markers(template)
    digits = available_digits(exclude_digit_4)

    candidates = set()
    for assignment in permutations(digits, len(markers)):
        candidates.add(render(template, dict(zip(markers, assignment))))
    return candidates
