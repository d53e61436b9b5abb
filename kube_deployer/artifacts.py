"""Artifact resolution."""

from abc import ABC, abstractmethod

from .errors import ConfigurationError

DOCKER_SCHEMES = ("docker://", "docker:")


class ArtifactResolver(ABC):
    """Turns an artifact reference into a container image."""

    @abstractmethod
    def resolve_image(self, artifact: str) -> str:
        """
        Resolve an artifact reference.

        Args:
            artifact: Artifact reference from the deployment request

        Returns:
            Container image reference

        Raises:
            ConfigurationError: If the reference cannot be resolved
        """


class DockerArtifactResolver(ArtifactResolver):
    """Resolves ``docker:`` references and bare image names."""

    def resolve_image(self, artifact: str) -> str:
        reference = artifact.strip()
        for scheme in DOCKER_SCHEMES:
            if reference.startswith(scheme):
                reference = reference[len(scheme) :]
                break
        else:
            if "://" in reference:
                raise ConfigurationError(f"Unsupported artifact reference: {artifact}")

        if not reference or any(c.isspace() for c in reference):
            raise ConfigurationError(f"Invalid image reference: {artifact}")
        return reference
