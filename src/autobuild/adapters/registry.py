"""Build the collaborator bundle for a config."""

from __future__ import annotations

from autobuild.adapters.base import AgentProcess, Collaborators
from autobuild.adapters.beads import BeadsTracker
from autobuild.adapters.claude import ClaudeStreamProcess
from autobuild.adapters.commands import CommandVerificationRunner
from autobuild.adapters.git import GitCommitter
from autobuild.adapters.silo_files import FileSiloStore
from autobuild.config.schema import AgentConfig, AutoBuildYamlConfig
from autobuild.errors import ConfigurationError


def get_agent(cfg: AgentConfig) -> AgentProcess:
    b = cfg.backend.lower()
    if b == "claude":
        return ClaudeStreamProcess(binary=cfg.binary or "claude", model=cfg.model)
    raise ConfigurationError(f"Unsupported agent backend: {cfg.backend}")


def build_collaborators(cfg: AutoBuildYamlConfig) -> Collaborators:
    return Collaborators(
        tracker=BeadsTracker(binary=cfg.tracker.binary),
        agent=get_agent(cfg.agent),
        verifier=CommandVerificationRunner(cfg.verification),
        vcs=GitCommitter(),
        silo=FileSiloStore(cfg.project.silo_dir),
    )
