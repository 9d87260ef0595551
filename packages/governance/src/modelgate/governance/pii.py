"""内置 PII 脱敏

按固定顺序应用一组朴素正则（邮箱、电话、卡号、美国 SSN、街道地址、两个首字母大写的单词），
命中片段替换为占位符。
"""

import re

from modelgate.core.config import REDACTION_PLACEHOLDER

PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("email", re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)),
    (
        "phone",
        re.compile(
            r"\b\+?\d{1,3}?[-.\s]??\(?\d{2,3}\)?[-.\s]??\d{3,4}[-.\s]??\d{4}\b",
            re.IGNORECASE,
        ),
    ),
    ("card_number", re.compile(r"\b(?:\d[ -]*?){13,16}\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    (
        "street_address",
        re.compile(
            r"\b\d{1,5}\s+[A-Z][\w\s]{1,30}\s+"
            r"(street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|court|ct|way)\b",
            re.IGNORECASE,
        ),
    ),
    ("person_name", re.compile(r"\b[A-Z][a-z]{1,20}\s+[A-Z][a-z]{1,20}\b")),
]


def redact_pii(text: str, placeholder: str = REDACTION_PLACEHOLDER) -> tuple[str, bool]:
    """脱敏文本

    Returns:
        (脱敏后文本, 是否发生替换)
    """
    redacted = text
    changed = False
    for _, pattern in PII_PATTERNS:
        redacted, count = pattern.subn(placeholder, redacted)
        if count:
            changed = True
    return redacted, changed
