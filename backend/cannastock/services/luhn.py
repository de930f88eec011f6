def compute_luhn_check_digit(base: str) -> str:
    if not base or not base.isascii() or not base.isdigit():
        raise ValueError("Base must be a non-empty digit string")
    total = 0
    double = True
    for ch in reversed(base):
        d = int(ch)
        if double:
            d *= 2
            if d > 9:
                d -= 9
        total += d
        double = not double
    check = (10 - (total % 10)) % 10
    return str(check)


def is_valid_luhn(number: str) -> bool:
    if len(number) < 2 or not number.isascii() or not number.isdigit():
        return False
    return compute_luhn_check_digit(number[:-1]) == number[-1]
