"""
Essayeur test orchestration emoji definitions.

Emojis for pipeline stages, run states, and test results.
"""

from shared.reporter.emojis.base_emojis import ComponentEmoji


class EssayeurEmoji(ComponentEmoji):
    """
    Test orchestration emojis.

    Categories:
        - Stages: Build, deploy, test
        - Runs: Run lifecycle and watch mode
        - Results: Test outcomes
    """

    # ============================================================
    # Pipeline Stages
    # ============================================================
    BUILD = "🔨"  # Compile stage
    DEPLOY = "📦"  # Migration/deploy stage
    TEST_RUN = "🔬"  # Test stage

    # ============================================================
    # Run Lifecycle
    # ============================================================
    RUN_START = "▶️"  # Run started
    RUN_DONE = "🏁"  # Run reached idle
    ABORT = "⏹️"  # Run aborted
    RERUN = "🔁"  # Rerun scheduled
    WATCH = "👀"  # Watch mode
    CHANGED = "📝"  # Changed file

    # ============================================================
    # Results
    # ============================================================
    TEST_PASS = "✅"  # Test passed
    TEST_FAIL = "❌"  # Test failed
    TEST_ERROR = "💥"  # Test error
    TEST_SKIP = "⏭️"  # Test skipped
    SUMMARY = "📊"  # Summary/statistics
    SUCCESS = "🎉"  # All tests passed
    FAILURE = "💔"  # Tests failed

    # ============================================================
    # Discovery & Info
    # ============================================================
    DISCOVER = "🔍"  # Discovery operation
    FILE = "📄"  # File
    CONTRACT = "📜"  # Contract artifact
    DRY_RUN = "🏃"  # Dry run mode
    INFO = "ℹ️"  # Information
    WARNING = "⚠️"  # Warning message
