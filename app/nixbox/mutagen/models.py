"""Mutagen sync session models."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SYNC_MODE = "two-way-resolved"


class SessionSpec(BaseModel):
    """Parameters for creating a sync session.

    An endpoint with an address is remote (``address:path``); without one
    it is a local path.

    Attributes:
        name: Session name.
        alpha_address: Host of the alpha endpoint, if remote.
        alpha_path: Path of the alpha endpoint.
        beta_address: Host of the beta endpoint, if remote.
        beta_path: Path of the beta endpoint.
        labels: Labels attached to the session.
        paused: Create the session paused.
        sync_mode: Mutagen sync mode. Empty means two-way-resolved.
        ignore_vcs: Skip version control directories.
        env_vars: Environment variables passed to mutagen.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    alpha_address: str = ""
    alpha_path: str = ""
    beta_address: str = ""
    beta_path: str = ""
    labels: Annotated[dict[str, str], Field(default_factory=dict)]
    paused: bool = False
    sync_mode: str = ""
    ignore_vcs: bool = False
    env_vars: Annotated[dict[str, str], Field(default_factory=dict)]

    @property
    def alpha(self) -> str:
        return f"{self.alpha_address}:{self.alpha_path}" if self.alpha_address else self.alpha_path

    @property
    def beta(self) -> str:
        return f"{self.beta_address}:{self.beta_path}" if self.beta_address else self.beta_path

    @property
    def effective_sync_mode(self) -> str:
        return self.sync_mode or DEFAULT_SYNC_MODE


class Endpoint(BaseModel):
    """One side of a sync session as reported by ``mutagen sync list``."""

    model_config = ConfigDict(extra="ignore")

    protocol: str = ""
    path: str = ""
    host: str = ""
    connected: bool = False


class Session(BaseModel):
    """A sync session as reported by ``mutagen sync list``.

    Attributes:
        identifier: Session identifier.
        name: Session name.
        alpha: Alpha endpoint.
        beta: Beta endpoint.
        mode: Sync mode.
        labels: Session labels.
        paused: Whether the session is paused.
        status: Current synchronization status.
    """

    model_config = ConfigDict(extra="ignore")

    identifier: str
    name: str = ""
    alpha: Endpoint = Field(default_factory=Endpoint)
    beta: Endpoint = Field(default_factory=Endpoint)
    mode: str = ""
    labels: Annotated[dict[str, str], Field(default_factory=dict)]
    paused: bool = False
    status: str = ""
