from essayeur.infrastructure.resolver.artifact_resolver import (
    ArtifactResolver,
    ContractInterface,
)

__all__ = ["ArtifactResolver", "ContractInterface"]
