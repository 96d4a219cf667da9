"""Pydantic schema for configuration validation."""

import hashlib
import json
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

WEEK = 7 * 24 * 60 * 60


class EscrowParameters(BaseModel):
    """Voting escrow parameters."""
    epoch_length_seconds: int = Field(default=WEEK, gt=0, description="Epoch length")
    max_term_seconds: int = Field(default=4 * 52 * WEEK, gt=0, description="Maximum lock term")
    min_lock_epochs: int = Field(default=3, ge=1, description="Minimum whole epochs of term at creation")
    min_increase_epochs: int = Field(
        default=1, ge=0,
        description="Whole epochs that must remain to increase amount or duration"
    )
    min_delegation_epochs: int = Field(
        default=2, ge=1,
        description="Whole epochs that must remain to delegate, switch or undelegate"
    )
    min_principal: int = Field(
        default=4 * 52 * WEEK, gt=0,
        description="Dust floor for total principal (base units)"
    )
    max_sync_epochs: Optional[int] = Field(
        default=None, gt=0,
        description="Epochs processed per account in one batch sync call (None = unbounded)"
    )

    @field_validator('max_term_seconds')
    @classmethod
    def validate_max_term(cls, v, info):
        """Maximum term must be a whole number of epochs."""
        epoch = info.data.get('epoch_length_seconds')
        if epoch and v % epoch != 0:
            raise ValueError("max_term_seconds must be a multiple of epoch_length_seconds")
        return v

    @model_validator(mode='after')
    def validate_floors(self):
        """Dust floor must yield a positive slope; epoch floors must fit the term."""
        if self.min_principal < self.max_term_seconds:
            raise ValueError(
                f"min_principal ({self.min_principal}) must be at least max_term_seconds "
                f"({self.max_term_seconds}) so every lock has a positive slope"
            )
        max_epochs = self.max_term_seconds // self.epoch_length_seconds
        if self.min_lock_epochs >= max_epochs:
            raise ValueError(
                f"min_lock_epochs ({self.min_lock_epochs}) must be below the "
                f"{max_epochs} epochs of the maximum term"
            )
        if self.min_delegation_epochs > self.min_lock_epochs:
            raise ValueError("min_delegation_epochs cannot exceed min_lock_epochs")
        return self

    @property
    def max_term_epochs(self) -> int:
        return self.max_term_seconds // self.epoch_length_seconds


class ActionWeights(BaseModel):
    """Relative frequency of simulated actions."""
    create: float = Field(default=4.0, ge=0)
    increase_amount: float = Field(default=1.0, ge=0)
    increase_duration: float = Field(default=1.0, ge=0)
    delegate: float = Field(default=1.5, ge=0)
    switch: float = Field(default=0.5, ge=0)
    undelegate: float = Field(default=0.5, ge=0)
    unlock: float = Field(default=1.0, ge=0)

    @model_validator(mode='after')
    def validate_positive_total(self):
        if sum(self.as_dict().values()) <= 0:
            raise ValueError("At least one action weight must be positive")
        return self

    def as_dict(self) -> Dict[str, float]:
        return self.model_dump()


class SimulationParameters(BaseModel):
    """Random scenario driver parameters."""
    num_owners: int = Field(default=20, gt=0, description="Accounts creating locks")
    num_delegates: int = Field(default=5, ge=0, description="Registered delegates")
    num_epochs: int = Field(default=52, gt=0, description="Epochs to simulate")
    actions_per_epoch: int = Field(default=10, ge=0, description="Actions attempted per epoch")
    idle_epoch_probability: float = Field(
        default=0.1, ge=0, le=1,
        description="Chance an epoch passes with no activity (exercises multi-epoch sync)"
    )
    random_seed: int = Field(default=42, description="Random seed for reproducibility")
    principal_range: Tuple[int, int] = Field(
        default=(10 ** 9, 10 ** 12), description="Uniform range for lock principal"
    )
    action_weights: ActionWeights = Field(default_factory=ActionWeights)

    @field_validator('principal_range')
    @classmethod
    def validate_principal_range(cls, v):
        low, high = v
        if low <= 0 or high < low:
            raise ValueError("principal_range must be (low, high) with 0 < low <= high")
        return v


class Config(BaseModel):
    """Complete configuration for the vePower ledger."""
    escrow: EscrowParameters = Field(default_factory=EscrowParameters)
    simulation: SimulationParameters = Field(default_factory=SimulationParameters)

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**(data or {}))

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
