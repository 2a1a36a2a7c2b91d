"""Deliberately unparsable."""


def broken(
    return 1
