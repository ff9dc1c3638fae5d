"""Minting — artifact stores and the operator-side orchestrator."""

from mintgate.minting.artifact_store import ArtifactStore, InMemoryArtifactStore
from mintgate.minting.chain import ChainArtifactStore
from mintgate.minting.orchestrator import MintingOrchestrator, build_artifact_input

__all__ = [
    "ArtifactStore",
    "ChainArtifactStore",
    "InMemoryArtifactStore",
    "MintingOrchestrator",
    "build_artifact_input",
]
