from __future__ import annotations

from stock_observer.labels import FALLBACK_PREFIX, UNSAFE_CHARACTERS, LabelNormalizer, normalize


plain = LabelNormalizer(transliterate=str)

SAMPLES = [
    "FastEx",
    "Fast Ex-Change (BTC/USD).v2",
    "Сбербанк",
    "Тинькофф Банк (RUB)",
    "Café Crème",
    "()/.",
    "東京",
    "a - b",
    "label_0123456789",
]


def test_substitution_table():
    assert plain("Fast Ex-Change (BTC/USD).v2") == "Fast_Ex_Change_BTCUSDv2"
    assert plain("a - b") == "a___b"
    assert plain("USDT") == "USDT"


def test_non_ascii_is_folded():
    assert plain("Café Crème") == "Cafe_Creme"


def test_default_transliterates_cyrillic():
    assert normalize("Сбербанк") == "Sberbank"
    assert normalize("Сбербанк RUB").endswith("_RUB")


def test_injected_transliterator():
    n = LabelNormalizer(transliterate=lambda s: s.replace("Ж", "Zh"))
    assert n("Ж-1") == "Zh_1"


def test_empty_input_stays_empty():
    assert normalize("") == ""


def test_fallback_for_names_that_normalize_to_nothing():
    label = plain("()/.")
    assert label.startswith(FALLBACK_PREFIX)
    assert len(label) == len(FALLBACK_PREFIX) + 10
    assert plain("()/.") == label
    assert plain("東京").startswith(FALLBACK_PREFIX)
    assert plain("東京") != label


def test_idempotent_and_safe():
    for n in (plain, normalize):
        for name in SAMPLES:
            once = n(name)
            assert n(once) == once, name
            assert not (set(once) & UNSAFE_CHARACTERS), once
            assert once.isascii(), once


def test_labels_tuple():
    assert plain.labels("Fast Ex", "USD", "RUB") == ("Fast_Ex", "USD", "RUB")
