from sshmesh.runtime.container import ContainerRuntime
from sshmesh.runtime.protocol import Runtime

__all__ = ["ContainerRuntime", "Runtime"]
