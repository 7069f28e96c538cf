from essayeur.infrastructure.migrations.migration_runner import (
    Deployer,
    ScriptMigrationRunner,
)

__all__ = ["Deployer", "ScriptMigrationRunner"]
