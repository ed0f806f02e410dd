from reporthub.ops.feed_consistency import compare_feed_strategies

__all__ = [
    "compare_feed_strategies",
]
