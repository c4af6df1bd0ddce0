"""Pydantic models for install-size resolution."""

from pydantic import BaseModel, ConfigDict, Field


class ResolvedPackage(BaseModel):
    """A package pinned to a concrete version in a dependency tree."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    unpacked_size: int = 0

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


class InstallSize(BaseModel):
    """Install size of a package and its transitive dependencies.

    ``partial`` is set when the traversal hit the package cap or the
    wall-clock timeout, in which case the sums are a lower bound.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str
    self_size: int = Field(..., alias="selfSize")
    total_size: int = Field(..., alias="totalSize")
    dependency_count: int = Field(..., alias="dependencyCount")
    partial: bool = False
