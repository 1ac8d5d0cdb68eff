"""
Query-side synonym expansion.

Only queries are expanded. Stored documents are indexed as written so that document
frequencies stay truthful.
"""

from typing import Dict, FrozenSet, Iterable, List, Sequence

SYNONYM_GROUPS = (
    ('赚钱', '收入', '赚', '钱', '盈利', '变现', '营收'),
    ('搞钱', '赚钱', '挣钱', '收入'),
    ('被动收入', '睡后收入', '自动赚钱'),
    ('社交', '面对面', '谈客户', '见人', '社恐'),
    ('记忆', '记住', '回忆', '存储'),
    ('ai', '人工智能', '机器学习', 'ml'),
    ('编程', '写代码', '开发', '代码', 'code', 'coding'),
    ('数学', '数学家', '算法', '公式'),
    ('项目', '产品', '工具', '服务'),
    ('天气', '温度', '气候', '气温', '冷', '热'),
    ('新加坡', '狮城', 'singapore', 'sg'),
    ('量化', '交易', '套利', '对冲'),
    ('开源', 'open source', 'github', '免费'),
    ('money', 'income', 'earn', 'revenue', 'profit'),
    ('weather', 'temperature', 'climate'),
)


class SynonymExpander:
    """Many-to-many synonym lookup built from groups of interchangeable terms."""

    def __init__(self, groups: Iterable[Sequence[str]] = SYNONYM_GROUPS):
        mapping: Dict[str, set] = {}
        for group in groups:
            members = {term.lower() for term in group}
            for term in members:
                mapping.setdefault(term, set()).update(members)
        self._map: Dict[str, FrozenSet[str]] = {term: frozenset(members) for term, members in mapping.items()}

    def synonyms(self, term: str) -> FrozenSet[str]:
        return self._map.get(term, frozenset())

    def expand(self, tokens: Sequence[str]) -> List[str]:
        """Append the group-mates of every token, keeping first-seen order.

        Args:
            tokens: Query tokens

        Returns:
            Original tokens followed by synonyms not already present
        """
        expanded = list(tokens)
        present = set(tokens)
        for token in tokens:
            # Sorted so expansion order does not depend on set iteration order
            for synonym in sorted(self._map.get(token, ())):
                if synonym not in present:
                    present.add(synonym)
                    expanded.append(synonym)
        return expanded


_default_expander = SynonymExpander()


def expand_synonyms(tokens: Sequence[str]) -> List[str]:
    """Expand tokens using the built-in synonym table."""
    return _default_expander.expand(tokens)
