"""
Birthday gift eligibility. The claim itself is the ``ClaimBirthdayGift``
ledger operation, which records the year key so a gift is paid once a year.
"""

from datetime import date
from typing import Optional, Union

from .accounts import Account


def is_birthday(birthday: Optional[Union[date, str]], today: date) -> bool:
    """True when month and day match; Feb 29 birthdays match Feb 28 in common years"""
    if not birthday:
        return False
    if isinstance(birthday, str):
        try:
            birthday = date.fromisoformat(birthday)
        except ValueError:
            return False

    if (birthday.month, birthday.day) == (today.month, today.day):
        return True
    leap_day = (birthday.month, birthday.day) == (2, 29)
    return leap_day and (today.month, today.day) == (2, 28) and not _is_leap(today.year)


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def year_key(today: date) -> str:
    return str(today.year)


def gift_available(account: Account, today: date) -> bool:
    """Birthday today and this year's gift not yet claimed"""
    return is_birthday(account.birthday, today) and year_key(today) not in account.birthday_gifts_claimed
