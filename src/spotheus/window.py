from datetime import date

DATE_FORMAT = "%Y-%m-%d"


def billing_window(today: "date") -> "tuple[str, str]":
    """
    returns the billing window containing the given day: the first
    day of its month and the first day of the next month (exclusive),
    formatted as `YYYY-MM-DD`.
    """
    start = today.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)

    return start.strftime(DATE_FORMAT), end.strftime(DATE_FORMAT)
