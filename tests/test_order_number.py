import random
import re

from storefront.order_number import generate_order_number


def test_format():
    assert re.fullmatch(r"ORD\d{11}", generate_order_number())


def test_uses_last_eight_digits_of_millis():
    number = generate_order_number(now_ms=1_712_345_678_901, rng=random.Random(0))

    assert number.startswith("ORD45678901")


def test_small_timestamps_are_zero_padded():
    number = generate_order_number(now_ms=42, rng=random.Random(1))

    assert number[3:11] == "00000042"
    assert len(number) == 14


def test_suffix_comes_from_rng():
    first = generate_order_number(now_ms=1000, rng=random.Random(7))
    second = generate_order_number(now_ms=1000, rng=random.Random(7))

    assert first == second
