"""
Currency-formatted text such as "£12,345".

Raw metric strings are wrapped in FormattedCurrency and must be unwrapped
with to_number() before any arithmetic or binning.
"""

import math
import re
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .errors import ValueParseError

CURRENCY_SYMBOLS = "£$€"

_NUMBER = re.compile(r"^-?(\d+(\.\d*)?|\.\d+)$")


def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


@dataclass(frozen=True)
class FormattedCurrency:
    """Numeric text carrying a currency symbol and thousands separators."""

    raw: str

    @classmethod
    def from_value(cls, value) -> Optional["FormattedCurrency"]:
        if _is_missing(value):
            return None
        return cls(str(value))

    def to_number(self) -> float:
        text = self.raw.strip()
        negative = text.startswith("-")
        if negative:
            text = text[1:].lstrip()

        text = text.lstrip(CURRENCY_SYMBOLS).strip()
        if text.startswith("-") and not negative:
            negative = True
            text = text[1:]
        text = text.replace(",", "")

        if not _NUMBER.match(text):
            raise ValueParseError(f"Cannot parse currency value {self.raw!r}", token=self.raw)

        number = float(text)
        return -number if negative else number

    def __str__(self) -> str:
        return self.raw


def parse_currency(value) -> Optional[float]:
    """
    Parse "£12,345"-style text to a float.

    Blank and NaN values are missing and return None.

    Raises:
        ValueParseError: the text is not a number once the currency symbol
            and thousands separators are removed
    """
    wrapped = FormattedCurrency.from_value(value)
    if wrapped is None:
        return None
    return wrapped.to_number()


def parse_number(value) -> Optional[float]:
    """Parse plain numeric text, allowing thousands separators."""
    if _is_missing(value):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().replace(",", "")
    if not _NUMBER.match(text):
        raise ValueParseError(f"Cannot parse numeric value {value!r}", token=value)
    return float(text)


def metric_values(series: pd.Series, currency: bool = False) -> pd.Series:
    """
    Convert one raw metric column to floats, keeping missing values as NaN.

    Raises:
        ValueParseError: any non-missing token is unparseable; the error
            carries the column name
    """
    parser = parse_currency if currency else parse_number
    values = []
    for token in series:
        try:
            number = parser(token)
        except ValueParseError as e:
            raise ValueParseError(
                f"Column '{series.name}': {e}", token=e.token, column=series.name
            ) from e
        values.append(float("nan") if number is None else number)
    return pd.Series(values, index=series.index, name=series.name, dtype="float64")
