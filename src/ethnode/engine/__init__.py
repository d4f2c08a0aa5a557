"""
Container engine client.

A thin asynchronous facade over the container runtime:

- ContainerEngine: the Protocol node supervision is written against
- DockerEngine: the docker SDK implementation
- Log decoding helpers shared by every engine
"""

from .docker_engine import DockerEngine
from .engine import ContainerEngine
from .logs import LineBuffer, LogLine, LogStream, decode_chunk, decode_line, strip_ansi
from .models import ContainerSpec, ContainerState, RestartPolicy, VolumeSpec

__all__ = [
    "ContainerEngine",
    "ContainerSpec",
    "ContainerState",
    "DockerEngine",
    "LineBuffer",
    "LogLine",
    "LogStream",
    "RestartPolicy",
    "VolumeSpec",
    "decode_chunk",
    "decode_line",
    "strip_ansi",
]
