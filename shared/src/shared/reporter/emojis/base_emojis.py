"""
Base class for emoji categories.

Each category is a plain class whose upper-case string attributes are
the emoji constants.
"""

from typing import Dict, List


class ComponentEmoji:
    """
    Base class for component-specific emoji collections.

    Example:
        >>> class StageEmoji(ComponentEmoji):
        ...     BUILD = "🔨"
        >>> StageEmoji.get_all()
        {'BUILD': '🔨'}
    """

    @classmethod
    def get_all(cls) -> Dict[str, str]:
        """
        Get all emoji definitions from this category and its bases.

        Returns:
            Dictionary mapping emoji name to emoji character
        """
        emojis: Dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if name.isupper() and isinstance(value, str):
                    emojis[name] = value
        return emojis

    @classmethod
    def list_names(cls) -> List[str]:
        """Get sorted list of emoji constant names."""
        return sorted(cls.get_all())

    @classmethod
    def format(cls, name: str, message: str) -> str:
        """
        Prefix message with the named emoji.

        Unknown names return the message unchanged.
        """
        emoji = cls.get_all().get(name.upper())
        return f"{emoji} {message}" if emoji else message
