from judgeindex.ai.augmenter import (
    Augmentation,
    Augmenter,
    NoopAugmenter,
    OpenAIAugmenter,
    build_augmenter,
)

__all__ = [
    "Augmentation",
    "Augmenter",
    "NoopAugmenter",
    "OpenAIAugmenter",
    "build_augmenter",
]
