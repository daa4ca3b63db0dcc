"""
Configuration for the FDC relayer.

All settings can be overridden via environment variables or a `.env` file.
The env names used by the original deployment scripts (COSTON2_PK,
SAPPHIRE_PK, ACCOUNTING_CONTRACT_ADDRESS, ...) are accepted as aliases.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .poller import BackoffPolicy
from .rounds import FIRST_VOTING_ROUND_START_TS, VOTING_EPOCH_DURATION_S, RoundClock

RelayMode = Literal["direct", "trustless"]

# 0.5 C2FLR
DEFAULT_ATTESTATION_FEE_WEI = 500_000_000_000_000_000


class Settings(BaseSettings):
    """Relayer settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Attestation chain (Coston2)
    source_rpc_url: str = Field(
        default="https://coston2-api.flare.network/ext/C/rpc",
        description="RPC of the chain hosting the FDC contracts",
        validation_alias=AliasChoices("SOURCE_RPC_URL", "COSTON2_RPC"),
    )
    source_chain_id: Optional[int] = Field(default=114, description="FDC chain ID")
    source_private_key: Optional[str] = Field(
        default=None,
        description="Key paying attestation fees",
        validation_alias=AliasChoices("SOURCE_PRIVATE_KEY", "COSTON2_PK"),
    )

    # Destination chain (Sapphire)
    destination_rpc_url: str = Field(
        default="https://testnet.sapphire.oasis.io",
        description="RPC of the chain hosting the accounting contract",
        validation_alias=AliasChoices("DESTINATION_RPC_URL", "SAPPHIRE_RPC"),
    )
    destination_chain_id: Optional[int] = Field(default=23295, description="Destination chain ID")
    destination_private_key: Optional[str] = Field(
        default=None,
        description="Relayer key authorized on the accounting contract",
        validation_alias=AliasChoices("DESTINATION_PRIVATE_KEY", "SAPPHIRE_PK"),
    )
    accounting_contract: Optional[str] = Field(
        default=None,
        description="Accounting contract address on the destination chain",
        validation_alias=AliasChoices(
            "ACCOUNTING_CONTRACT", "ACCOUNTING_CONTRACT_ADDRESS", "CONTRACT_ADDRESS"
        ),
    )

    # Off-chain services
    verifier_base_url: str = Field(
        default="https://fdc-verifiers-testnet.flare.network/",
        description="Attestation preparation service",
    )
    da_layer_url: str = Field(
        default="https://ctn2-data-availability.flare.network/",
        description="Proof availability (DA layer) service",
    )
    api_key: str = Field(
        default="00000000-0000-0000-0000-000000000000",
        description="X-API-KEY sent to both services",
    )
    http_timeout_seconds: float = Field(default=30.0, description="Per-request HTTP timeout")

    # FDC contracts (Coston2)
    fdc_hub: str = Field(default="0x48aC463d7975828989331F4De43341627b9c5f1D")
    fdc_fee_config: str = Field(default="0x191a1282Ac700edE65c5B0AaF313BAcC3eA7fC7e")
    fdc_verification: str = Field(default="0x075bf301fF07C4920e5261f93a0609640F53487D")
    contract_registry: str = Field(default="0xaD67FE66660Fb8dFE9d6b1b4240d8650e30F6019")
    relay_contract: Optional[str] = Field(
        default=None,
        description="Relay address; looked up in the contract registry when unset",
    )
    fdc_protocol_id: int = Field(default=200)
    default_fee_wei: int = Field(
        default=DEFAULT_ATTESTATION_FEE_WEI,
        description="Fee used when the fee configuration cannot be queried",
    )

    # Attestation request
    source_id: str = Field(default="testETH", description="FDC source id tag")
    verifier_source_path: str = Field(default="eth", description="Verifier URL path segment")
    required_confirmations: int = Field(
        default=1, ge=0, validation_alias=AliasChoices("REQUIRED_CONFIRMATIONS")
    )
    expected_status: int = Field(
        default=1, validation_alias=AliasChoices("EXPECT_STATUS", "EXPECTED_STATUS")
    )

    # Voting round timing
    first_voting_round_start_ts: int = Field(default=FIRST_VOTING_ROUND_START_TS)
    voting_epoch_duration_s: int = Field(default=VOTING_EPOCH_DURATION_S, gt=0)

    # Proof polling
    initial_wait_seconds: float = Field(default=95.0, ge=0)
    first_retry_delay_seconds: float = Field(default=10.0, gt=0)
    retry_backoff_multiplier: float = Field(default=1.5, ge=1.0)
    max_retry_delay_seconds: float = Field(default=30.0, gt=0)
    proof_deadline_seconds: float = Field(default=600.0, gt=0)

    # Relay
    relay_mode: RelayMode = Field(default="trustless")
    database_url: str = Field(default="sqlite:///./fdc_relayer.db")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    def round_clock(self) -> RoundClock:
        return RoundClock(self.first_voting_round_start_ts, self.voting_epoch_duration_s)

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_wait=self.initial_wait_seconds,
            first_delay=self.first_retry_delay_seconds,
            multiplier=self.retry_backoff_multiplier,
            max_delay=self.max_retry_delay_seconds,
            deadline=self.proof_deadline_seconds,
        )

    def missing_for(self, mode: Optional[RelayMode] = None) -> list[str]:
        """
        List settings required for a relay in `mode` that are not set.

        With mode=None only the attestation side is checked.
        """
        missing = []
        if not self.source_private_key:
            missing.append("SOURCE_PRIVATE_KEY (or COSTON2_PK)")
        if mode is not None:
            if not self.destination_private_key:
                missing.append("DESTINATION_PRIVATE_KEY (or SAPPHIRE_PK)")
            if not self.accounting_contract:
                missing.append("ACCOUNTING_CONTRACT (or ACCOUNTING_CONTRACT_ADDRESS)")
        return missing


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
