# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
Provide Damerau-Levenshtein distance helpers, used for suggesting the closest match for a mistyped
name (e.g., a CPU model name or a command-line argument).
"""

from __future__ import annotations # Remove when switching to Python 3.10+.

import typing

if typing.TYPE_CHECKING:
    from typing import Iterable

def osa_distance(first: str, second: str) -> int:
    """
    Calculate the optimal string alignment distance between two strings.

    Args:
        first: The first string.
        second: The second string.

    Returns:
        The number of deletions, insertions, substitutions and transpositions of adjacent
        characters needed to turn 'first' into 'second'.
    """

    matrix = [[idx] for idx in range(len(first) + 1)]
    matrix[0] = list(range(len(second) + 1))

    for fdx in range(1, len(first) + 1):
        for sdx in range(1, len(second) + 1):
            cost = 0 if first[fdx-1] == second[sdx-1] else 1

            matrix[fdx].append(min(matrix[fdx-1][sdx] + 1, # Deletion.
                                   matrix[fdx][sdx-1] + 1, # Insertion.
                                   matrix[fdx-1][sdx-1] + cost)) # Substitution.

            if fdx > 1 and sdx > 1 and first[fdx-1] == second[sdx-2] and \
               first[fdx-2] == second[sdx-1]: # Transposition.
                matrix[fdx][sdx] = min(matrix[fdx][sdx], matrix[fdx-2][sdx-2] + cost)

    return matrix[len(first)][len(second)]

def closest_match(string: str,
                  strings: Iterable[str],
                  max_distance: int = 2,
                  case_sensitive: bool = False) -> str | None:
    """
    Find the closest match to a string.

    Args:
        string: The string to find the closest match for.
        strings: The candidate strings.
        max_distance: The maximum allowed distance. Candidates further away are not considered.
        case_sensitive: Whether the comparison is case-sensitive.

    Returns:
        The closest candidate string, or 'None' if no candidate is close enough.
    """

    options = {option if case_sensitive else option.lower(): option for option in strings}
    if not case_sensitive:
        string = string.lower()

    best: tuple[int, str | None] = (max_distance + 1, None)
    for option in options:
        score = osa_distance(string, option)
        if score < best[0]:
            best = (score, option)

    if best[1] is None:
        return None
    return options[best[1]]
