"""ArtifactOS versioning — artifacts and their version chains."""

from artifactos.versioning.chain import VersionChainManager

__all__ = ["VersionChainManager"]
