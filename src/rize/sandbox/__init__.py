"""Sandbox engine: per-project container lifecycle and interactive exec.

Split into focused submodules:
  _errors        - SandboxError / CommandFailedError taxonomy
  _docker        - client lifetime, image and network preconditions
  _environment   - container and exec environment lists
  _mounts        - bind/volume mount list
  _spec          - merged config + host state -> ResolvedContainerSpec
  _reconcile     - create / reuse / start state machine
  _networks      - service discovery by compose label, network attachment
  _terminal      - raw terminal scope guard
  _exec          - exec create, stream copy, exit-code polling
  _orchestrator  - run_container, chaining all of the above
"""

from rize.sandbox._docker import docker_client, ensure_image, ensure_network, pull_image
from rize.sandbox._errors import CommandFailedError, ComposeError, SandboxError
from rize.sandbox._exec import exec_in_container, wait_for_exec
from rize.sandbox._networks import (
    DockerServiceLocator,
    ServiceLocator,
    StaticServiceLocator,
    attach_to_service_networks,
)
from rize.sandbox._orchestrator import run_container
from rize.sandbox._reconcile import ensure_container, inspect_container
from rize.sandbox._spec import compose_container_spec

__all__ = [
    "CommandFailedError",
    "ComposeError",
    "DockerServiceLocator",
    "SandboxError",
    "ServiceLocator",
    "StaticServiceLocator",
    "attach_to_service_networks",
    "compose_container_spec",
    "docker_client",
    "ensure_container",
    "ensure_image",
    "ensure_network",
    "exec_in_container",
    "inspect_container",
    "pull_image",
    "run_container",
    "wait_for_exec",
]
