"""ArtifactOS lineage — relationships between artifacts and their traversal."""

from artifactos.lineage.graph import LineageGraph

__all__ = ["LineageGraph"]
