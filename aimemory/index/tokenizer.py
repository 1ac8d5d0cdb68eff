"""
Mixed-script tokenizer for TF-IDF indexing and deduplication.

Chinese text has no word boundaries, so each ideograph run contributes its single
characters plus every adjacent-character bigram. Everything else is lowercased and
split into alphanumeric words.
"""

import re
from typing import List, Optional

STOP_WORDS = frozenset([
    # English
    'the', 'a', 'an', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'shall', 'can', 'to', 'of', 'in', 'for',
    'on', 'with', 'at', 'by', 'from', 'as', 'into', 'about', 'it', 'its',
    'this', 'that', 'these', 'those', 'he', 'she', 'we', 'they', 'me',
    'him', 'her', 'us', 'them', 'my', 'his', 'our', 'your', 'their',
    'what', 'which', 'who', 'when', 'where', 'how', 'not', 'no', 'nor',
    'but', 'or', 'and', 'if', 'then', 'so', 'than', 'too', 'very',
    'just', 'also', 'now', 'here', 'there', 'all', 'any', 'both', 'each',
    # Chinese particles and very common characters
    '的', '了', '在', '是', '我', '有', '和', '就', '不', '人', '都',
    '一', '一个', '上', '也', '很', '到', '说', '要', '去', '你',
    '会', '着', '没有', '看', '好', '自己', '这', '他', '她', '它',
])

_CJK_CLASS = '\u4e00-\u9fff\u3400-\u4dbf'
_CJK_SPLIT_RE = re.compile(f'([{_CJK_CLASS}]+)')
_CJK_RUN_RE = re.compile(f'[{_CJK_CLASS}]+')
_CJK_CHAR_RE = re.compile(f'[{_CJK_CLASS}]')
_WORD_RE = re.compile(r'[a-z0-9]+')


def tokenize(text: Optional[str]) -> List[str]:
    """Split text into index terms, dropping stop-words.

    Args:
        text: Raw text, may be empty or None

    Returns:
        Ordered list of tokens (deterministic for a given input)
    """
    if not text:
        return []

    tokens: List[str] = []
    for part in _CJK_SPLIT_RE.split(text):
        if not part:
            continue
        if _CJK_CHAR_RE.match(part):
            chars = list(part)
            tokens.extend(ch for ch in chars if ch not in STOP_WORDS)
            # Bigrams are filtered on their own membership, not their characters'
            for i in range(len(chars) - 1):
                bigram = chars[i] + chars[i + 1]
                if bigram not in STOP_WORDS:
                    tokens.append(bigram)
        else:
            tokens.extend(word for word in _WORD_RE.findall(part.lower())
                          if len(word) > 1 and word not in STOP_WORDS)
    return tokens


def token_set(text: Optional[str]) -> List[str]:
    """Unique tokens used for near-duplicate detection.

    Looser than ``tokenize``: no stop-word or length filtering, and Chinese runs
    contribute bigrams only. Order is first occurrence, bigrams before words.
    """
    if not text:
        return []
    lower = text.lower()
    seen = {}
    for run in _CJK_RUN_RE.findall(lower):
        for i in range(len(run) - 1):
            seen.setdefault(run[i:i + 2], None)
    for word in _WORD_RE.findall(lower):
        seen.setdefault(word, None)
    return list(seen)
