"""
System-level operations and lifecycle emoji definitions.
"""

from shared.reporter.emojis.base_emojis import ComponentEmoji


class SystemEmoji(ComponentEmoji):
    """System-level operations and lifecycle events."""

    # ============================================================
    # Lifecycle Operations
    # ============================================================
    STARTUP = "🚀"  # Process/component startup
    SHUTDOWN = "🛑"  # Process/component shutdown
    READY = "✅"  # Component initialized successfully
    RESTART = "🔄"  # Restart operation

    # ============================================================
    # Configuration
    # ============================================================
    CONFIG_LOAD = "📋"  # Configuration loading
    CONFIG_ERROR = "❌"  # Configuration error

    # ============================================================
    # Network
    # ============================================================
    NETWORK = "🌐"  # Chain node operation
    CONNECTED = "🔌"  # Connection established
    ACCOUNTS = "👛"  # Accounts fetched

    # ============================================================
    # Maintenance & Cleanup
    # ============================================================
    CLEANUP = "🧹"  # Resource cleanup
    RESET = "♻️"  # Reset to initial state
