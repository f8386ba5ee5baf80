"""Grade and age arithmetic for camp grouping.

Grades are numeric: -1 is Pre-K, 0 is Kindergarten, 1-12 are grades 1-12.
A child's expected grade comes from their age on the first day of the school
year the camp falls in. The school year starts on the 1st of the cutoff month
(September by default).
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import NamedTuple

MIN_GRADE = -1
MAX_GRADE = 12
DEFAULT_CUTOFF_MONTH = 9


class GradeLevel(NamedTuple):
    numeric: int
    name: str
    short: str


GRADE_LEVELS: dict[int, GradeLevel] = {
    -1: GradeLevel(-1, "Pre-Kindergarten", "Pre-K"),
    0: GradeLevel(0, "Kindergarten", "K"),
    1: GradeLevel(1, "1st Grade", "1st"),
    2: GradeLevel(2, "2nd Grade", "2nd"),
    3: GradeLevel(3, "3rd Grade", "3rd"),
    **{n: GradeLevel(n, f"{n}th Grade", f"{n}th") for n in range(4, 13)},
}

_PRE_K = re.compile(r"^(pre-?k|pre-?kindergarten|pk|preschool)$")
_KINDERGARTEN = re.compile(r"^(kindergarten|kinder|k)$")

_WORD_GRADES = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
    "eleventh": 11,
    "twelfth": 12,
}


def clamp_grade(grade: int) -> int:
    return max(MIN_GRADE, min(MAX_GRADE, grade))


def age_in_years(date_of_birth: date, at_date: date) -> int:
    """Age in complete years at a given date (never negative)."""
    age = at_date.year - date_of_birth.year
    if (at_date.month, at_date.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return max(0, age)


def age_in_months(date_of_birth: date, at_date: date) -> int:
    """Age in complete months at a given date (never negative)."""
    months = (at_date.year - date_of_birth.year) * 12 + (at_date.month - date_of_birth.month)
    if at_date.day < date_of_birth.day:
        months -= 1
    return max(0, months)


def school_year_start(camp_start: date, cutoff_month: int = DEFAULT_CUTOFF_MONTH) -> date:
    """First day of the school year the camp falls in.

    A camp starting in or after the cutoff month belongs to the school year
    that began that same year; earlier camps belong to the previous one.
    """
    if camp_start.month >= cutoff_month:
        return date(camp_start.year, cutoff_month, 1)
    return date(camp_start.year - 1, cutoff_month, 1)


def compute_grade_from_dob(
    date_of_birth: date,
    camp_start: date,
    cutoff_month: int = DEFAULT_CUTOFF_MONTH,
) -> int:
    """Expected grade for a camper, clamped to [-1, 12].

    A child who is 5 on the first day of the school year is in Kindergarten.
    A birthday falling exactly on the cutoff day counts as already reached.
    """
    age = age_in_years(date_of_birth, school_year_start(camp_start, cutoff_month))
    return clamp_grade(age - 5)


def parse_grade(grade_text: str | None) -> int | None:
    """Parse a parent-entered grade into its numeric value.

    Handles "Pre-K"/"PK" (-1), "K"/"Kindergarten" (0), "3rd", "3rd Grade",
    "Grade 3", "third". Returns None when the text is empty, unparseable
    or outside [-1, 12].
    """
    if grade_text is None:
        return None

    normalized = grade_text.strip().lower()
    if not normalized:
        return None

    if _PRE_K.match(normalized):
        return -1
    if _KINDERGARTEN.match(normalized):
        return 0

    for word, grade in _WORD_GRADES.items():
        if word in normalized:
            return grade

    digits = re.sub(r"\D", "", normalized)
    if not digits:
        return None

    grade = int(digits)
    if MIN_GRADE <= grade <= MAX_GRADE:
        return grade
    return None


def parse_date_of_birth(value: date | datetime | str | None) -> date | None:
    """Coerce a stored date of birth to a date. Unparseable values give None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_grade(grade: int) -> str:
    """Short display label: "Pre-K", "K", "1st", "2nd", ..."""
    level = GRADE_LEVELS.get(grade)
    if level is None:
        return f"Grade {grade}"
    return level.short


def format_grade_range(min_grade: int, max_grade: int) -> str:
    """Display a grade range like "K - 2nd"."""
    if min_grade == max_grade:
        return format_grade(min_grade)
    return f"{format_grade(min_grade)} - {format_grade(max_grade)}"
